from __future__ import annotations

import os
import shutil
import tempfile
from dataclasses import dataclass
from typing import Iterable, Mapping
from urllib.parse import urlparse

import fsspec
import pyarrow as pa
import pyarrow.parquet as pq


@dataclass(frozen=True)
class WriteResult:
    uri: str
    rows: int
    bytes_written: int


def _publish_local(src_path: str, dest_path: str) -> None:
    os.makedirs(os.path.dirname(dest_path), exist_ok=True)
    # Readers glob the directory; only complete files may appear there.
    os.replace(src_path, dest_path)


def _publish_remote(src_path: str, dest_uri: str) -> None:
    fs, path = fsspec.core.url_to_fs(dest_uri)
    fs.makedirs(os.path.dirname(path), exist_ok=True)
    with fs.open(path, "wb") as handle, open(src_path, "rb") as src:
        shutil.copyfileobj(src, handle)


def write_parquet(
    rows: Iterable[Mapping[str, object]],
    schema: pa.Schema,
    dest_uri: str,
    compression: str = "zstd",
) -> WriteResult:
    rows_list = rows if isinstance(rows, list) else list(rows)
    table = pa.Table.from_pylist(rows_list, schema=schema)
    parsed = urlparse(dest_uri)
    local_dest = parsed.path if parsed.scheme == "file" else dest_uri
    remote = bool(parsed.scheme and parsed.netloc)
    tmp_dir = None if remote else os.path.dirname(local_dest) or None
    if tmp_dir:
        os.makedirs(tmp_dir, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        suffix=".parquet.tmp", dir=tmp_dir, delete=False
    ) as tmp:
        tmp_path = tmp.name

    try:
        pq.write_table(table, tmp_path, compression=compression)
        bytes_written = os.path.getsize(tmp_path)
        if remote:
            _publish_remote(tmp_path, dest_uri)
        else:
            _publish_local(tmp_path, local_dest)
    finally:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)

    return WriteResult(uri=dest_uri, rows=table.num_rows, bytes_written=bytes_written)
