class NotFoundError(Exception):
    """
    Exception raised when a datacenter, VM or migration record does not exist in the store.
    """

    def __init__(self, kind: str, identifier: str, scope: str = None):
        self.kind = kind
        self.identifier = identifier
        self.scope = scope
        message = f"{kind} {identifier} not found"
        if scope:
            message = f"{message} in {scope}"
        super().__init__(message)


class InvalidOperationError(Exception):
    """
    Exception raised when a store operation is rejected, e.g. migrating a VM to its own datacenter.
    """

    pass


class ClusterCredentialError(Exception):
    """
    Exception raised when a cluster kubeconfig is missing or cannot be used to build a client.
    """

    pass


class ConfigurationError(Exception):
    pass


class ResourceConversionError(Exception):
    """
    Exception raised when a watch event carries an object that cannot be converted.
    """

    pass
