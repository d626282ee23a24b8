"""tools/csv_utils
File-locked CSV helpers for round estimate exports.

Exports may be written while another run is appending to the same file, so
every write takes a portalocker lock.
"""

import csv
import os
import tempfile
import portalocker


def _ensure_parent(path: str):
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)


def safe_append_row(csv_path: str, row: dict, fieldnames: list):
    """Append a single row to CSV with file locking. Creates header if file empty."""
    _ensure_parent(csv_path)
    with open(csv_path, 'a+', encoding='utf-8', newline='') as f:
        portalocker.lock(f, portalocker.LockFlags.EXCLUSIVE)
        try:
            f.seek(0)
            empty = f.read(1) == ''
            f.seek(0, os.SEEK_END)
            writer = csv.DictWriter(f, fieldnames=fieldnames, extrasaction='ignore')
            if empty:
                writer.writeheader()
            writer.writerow(row)
            f.flush()
            os.fsync(f.fileno())
        finally:
            portalocker.unlock(f)


def safe_overwrite_rows(csv_path: str, rows: list, fieldnames: list):
    """Replace the CSV with `rows` via a locked tmp-file swap."""
    _ensure_parent(csv_path)
    dirn = os.path.dirname(csv_path) or '.'
    fd, tmp_path = tempfile.mkstemp(prefix='csv_tmp_', suffix='.csv', dir=dirn)
    os.close(fd)
    try:
        with open(tmp_path, 'w', encoding='utf-8', newline='') as tf:
            writer = csv.DictWriter(tf, fieldnames=fieldnames, extrasaction='ignore')
            writer.writeheader()
            writer.writerows(rows)

        with open(csv_path + '.lock', 'w', encoding='utf-8') as lf:
            portalocker.lock(lf, portalocker.LockFlags.EXCLUSIVE)
            try:
                os.replace(tmp_path, csv_path)
            finally:
                portalocker.unlock(lf)
    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
