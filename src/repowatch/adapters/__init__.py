"""Storage adapters implementing repowatch.core.ports.RepoStoragePort."""
