"""Table ordering and prefix matching."""
from dbdump_core.jobs.models import TableEntry, VIEW

# Dumped first, in this order, so a restore gets settings and accounts early.
PRIORITY_TABLES = ["options", "site", "blogs", "users", "usermeta"]

CORE_TABLES = {
    "terms",
    "term_taxonomy",
    "termmeta",
    "term_relationships",
    "commentmeta",
    "comments",
    "links",
    "postmeta",
    "posts",
    "site",
    "sitemeta",
    "blogs",
    "blogversions",
    "blogmeta",
}


def table_sort_key(entry: TableEntry, prefix: str = "") -> tuple:
    """Sort key: tables before views, priority tables, core tables, then name."""
    name = entry.name
    priority = len(PRIORITY_TABLES)
    for rank, base in enumerate(PRIORITY_TABLES):
        if name == prefix + base:
            priority = rank
            break

    plugin = 0
    if prefix:
        bare = name[len(prefix):] if name.startswith(prefix) else name
        plugin = 0 if bare in CORE_TABLES else 1

    return (entry.kind == VIEW, priority, plugin, name)


def sort_tables(tables: list[TableEntry], prefix: str = "") -> list[TableEntry]:
    """Return tables in dump order."""
    return sorted(tables, key=lambda t: table_sort_key(t, prefix))


def has_case_duplicates(names: list[str]) -> bool:
    """True if some name has a twin differing only in letter case."""
    seen = set(names)
    return any(name.lower() != name and name.lower() in seen for name in names)


def matches_prefix(name: str, prefix: str, exact_case: bool = False) -> bool:
    """Check a table against the dump prefix.

    Matching is case-insensitive unless case-duplicate tables exist, in
    which case two tables could otherwise be taken for one.
    """
    if not prefix:
        return True
    if exact_case:
        return name.startswith(prefix)
    return name.lower().startswith(prefix.lower())


def dump_name(name: str, prefix: str, duplicates: bool) -> str:
    """Name the table is written under, with the prefix in canonical case."""
    if (
        prefix
        and not duplicates
        and name.lower().startswith(prefix.lower())
        and not name.startswith(prefix)
    ):
        return prefix + name[len(prefix):]
    return name
