"""Website UX audit service: job pipeline, API and client sync layer."""
