"""Background task infrastructure: Taskiq broker and APScheduler jobs."""
