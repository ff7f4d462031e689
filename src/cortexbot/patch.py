"""Run-length diff decoding for generals.io array updates.

The server never resends whole arrays. Each update carries a diff that
describes the new array in terms of the previous one:

    [copy, replace, v1, ..., v_replace, copy, replace, ...]

``copy`` elements are taken unchanged from the previous array, then
``replace`` literal values follow. The same routine is used for the map
array and for the cities array.
"""

from typing import Sequence


class PatchError(ValueError):
    """Raised when a diff does not fit the array it is applied to."""


def patch(previous: Sequence[int], diff: Sequence[int]) -> list[int]:
    """Apply a run-length diff to a previous array.

    Args:
        previous: The full array from the previous update (may be empty).
        diff: Alternating copy-length / replace-length runs, each replace
            length followed by that many literal values.

    Returns:
        The new full array.

    Raises:
        PatchError: If a run reaches past the end of ``previous`` or a
            replace run promises more literals than ``diff`` contains.

    Example:
        >>> patch([0, 0, 0, 0], [1, 1, 5, 2])
        [0, 5, 0, 0]
    """
    out: list[int] = []
    cursor = 0  # position in the diff
    source = 0  # position in the previous array

    while cursor < len(diff):
        # Copy run
        copy_len = diff[cursor]
        cursor += 1
        if copy_len < 0:
            raise PatchError(f"Negative copy length {copy_len} at diff index {cursor - 1}")
        if source + copy_len > len(previous):
            raise PatchError(
                f"Copy of {copy_len} elements at {source} overruns previous array "
                f"of length {len(previous)}"
            )
        out.extend(previous[source:source + copy_len])
        source += copy_len

        if cursor >= len(diff):
            break

        # Replace run
        replace_len = diff[cursor]
        cursor += 1
        if replace_len < 0:
            raise PatchError(f"Negative replace length {replace_len} at diff index {cursor - 1}")
        if cursor + replace_len > len(diff):
            raise PatchError(
                f"Replace run of {replace_len} values at diff index {cursor} "
                f"overruns diff of length {len(diff)}"
            )
        out.extend(diff[cursor:cursor + replace_len])
        cursor += replace_len
        # Replaced values overwrite the previous array in place
        source += replace_len

    return out
