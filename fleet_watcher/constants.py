# Watch loop timings (seconds)
WATCH_RESTART_DELAY = 5  # Wait after a watch stream closes before reopening
WATCH_RETRY_DELAY = 30  # Wait after a watch stream fails to open
WATCH_TIMEOUT_SECONDS = 300  # Server side timeout for a single watch request

# Migration detector timings (seconds)
MIGRATION_TIMEOUT = 300  # VMs gone longer than this are considered deleted
CLEANUP_INTERVAL = 60  # How often pending migrations are swept

# Placeholder disk size (GB) when the root volume capacity is unknown
DEFAULT_DISK_GB = 100
ROOT_DISK_VOLUME = "rootdisk"

# KubeVirt API
KUBEVIRT_GROUP = "kubevirt.io"
KUBEVIRT_VERSION = "v1"
VM_PLURAL = "virtualmachines"
VMI_PLURAL = "virtualmachineinstances"
MIGRATION_PLURAL = "virtualmachineinstancemigrations"

# Persistent store
DEFAULT_DB_PATH = "/tmp/fleet-watcher.db"
DATACENTERS_BUCKET = "datacenters"
MIGRATIONS_BUCKET = "migrations"
COLLECTION_KEY = "collection"
SEED_CONFIG_NAME = "datacenters"
SEED_SEARCH_PATHS = ["frontend", "config", "."]
SEED_EXTENSIONS = ["json", "yaml", "yml"]

# Event hub
EVENT_HUB_BUFFER = 16

# Deleted migration uids remembered per cluster to ignore late events
REMOVED_MIGRATION_MEMORY = 1024
