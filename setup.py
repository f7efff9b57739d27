import pathlib
from setuptools import find_packages, setup

# The directory containing this file
HERE = pathlib.Path(__file__).parent

# The text of the README file
DESCRIPTION = (HERE / "README.md").read_text()

# Runtime dependencies, one per line
REQUIRE = (HERE / "requirements.txt").read_text().splitlines()

setup(
    name="fleet_watcher",
    version="0.0.1",
    description="Multi-cluster KubeVirt VM watcher with cross-cluster migration tracking",
    long_description=DESCRIPTION,
    long_description_content_type="text/markdown",
    platforms="any",
    classifiers=[
        "Operating System :: OS Independent",
        "Programming Language :: Python",
        "Programming Language :: Python :: 3",
        "Intended Audience :: Developers",
    ],
    packages=find_packages(include=["fleet_watcher", "fleet_watcher.*"]),
    include_package_data=True,
    install_requires=REQUIRE,
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "fleet_watcher = fleet_watcher.cli:main",
        ]
    },
)
