"""Infrastructure: Redis store, taskiq integration, logging and metrics."""
