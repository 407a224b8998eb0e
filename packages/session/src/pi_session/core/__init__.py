"""Session log core: entry model, replay, context assembly and collaborators."""
