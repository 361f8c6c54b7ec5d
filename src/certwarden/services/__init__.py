"""Background services: renewal scheduler, directory watcher, ignore list."""
