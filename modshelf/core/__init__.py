"""
Core application engine.

The `RepositoryContext` bundles the settings with the stores built from them,
the `RefreshPipeline` fills the view cache in the background and the `Session`
coordinates both with the filesystem watcher for the CLI.
"""
