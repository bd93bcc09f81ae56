#!/usr/bin/env python3
"""
region_index.py - Queries over the flat ByteRegion list

Two pure lookups used by inspectors:
    find_region_by_byte  - "which field produced this byte?"
    find_regions_by_path - "which bytes encode this field?"

Neither function mutates the region list.
"""

from typing import List, Optional, Sequence

from region_decoder import ByteRegion


def find_region_by_byte(regions: Sequence[ByteRegion], byte_index: int) -> Optional[ByteRegion]:
    """
    Return the most specific region containing byte_index.

    Most specific means smallest span (end - start). Equal spans resolve to
    the region recorded first. Returns None if no region contains the byte.
    """
    best = None
    for region in regions:
        if region.start <= byte_index < region.end:
            if best is None or region.end - region.start < best.end - best.start:
                best = region
    return best


def find_regions_by_path(regions: Sequence[ByteRegion], path: str) -> List[ByteRegion]:
    """All regions whose path equals `path`, in recording order."""
    return [r for r in regions if r.path == path]
