"""
CSV export
Semicolon-separated rows, one per sample, with a running index
"""

import csv
from typing import Iterable, TextIO

from sensor_models import TIME_FORMAT, Sample

CSV_COLUMNS = ("index", "timestamp", "temperature", "humidity", "pressure", "CO2")
CSV_HEADER = ";".join(CSV_COLUMNS)


def write_csv(samples: Iterable[Sample], out: TextIO) -> int:
    """Write samples as semicolon-separated rows; returns the row count."""
    writer = csv.writer(out, delimiter=';', lineterminator='\n')
    writer.writerow(CSV_COLUMNS)
    count = 0
    for i, s in enumerate(samples):
        writer.writerow([
            i,
            s.time.strftime(TIME_FORMAT),
            f"{s.temperature:.2f}",
            f"{s.humidity:g}",
            f"{s.pressure:.1f}",
            s.co2,
        ])
        count += 1
    return count
