def display_path(path: str) -> str:
    """``Patient.name.family`` -> ``name.family``; the root keeps its type name."""
    head, _, rest = path.partition(".")
    return rest or head
