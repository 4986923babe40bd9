from fleetgate_core.storage.paths import join_uri, part_filename
from fleetgate_core.storage.writer import WriteResult, write_parquet

__all__ = [
    "WriteResult",
    "join_uri",
    "part_filename",
    "write_parquet",
]
