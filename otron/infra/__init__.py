"""Infrastructure adapters: storage, clients, IO and configuration."""
