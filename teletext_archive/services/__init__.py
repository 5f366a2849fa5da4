"""Archive services: inventory, thumbnails, scheduling and file management."""
