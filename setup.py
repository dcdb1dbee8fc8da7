from setuptools import find_packages, setup

setup(
    name="env-archive",
    version="0.1.0",
    packages=find_packages(include=["env_archive", "env_archive.*"]),
    entry_points={
        "console_scripts": [
            "env-archive=env_archive.cli:main",
        ],
    },
    python_requires=">=3.10",
    extras_require={
        "test": ["pytest"],
    },
    description="env-archive — archive .env files with path and time tags, and restore them",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: System :: Archiving :: Backup",
        "Programming Language :: Python :: 3.12",
    ],
)
