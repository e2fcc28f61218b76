"""Size enforcement and overlap for chunks produced by the splitters."""

from dataclasses import replace

from context_mcp.indexer.models import Chunk

# Default maximum characters per chunk
DEFAULT_CHUNK_SIZE = 2500

# Default characters carried over from the previous chunk
DEFAULT_CHUNK_OVERLAP = 300


def split_large_chunk(chunk: Chunk, max_size: int) -> list[Chunk]:
    """
    Split an oversized chunk on line boundaries.

    Lines accumulate into a buffer until the next line would push it past
    max_size; the buffer is then closed (trailing whitespace trimmed) and a
    new one starts at that line. A single line longer than max_size is cut
    into max_size pieces that all report that line.
    """
    lines = chunk.content.split("\n")
    sub_chunks: list[Chunk] = []
    buffer = ""
    buffer_start = 0  # Index of the buffer's first line within the chunk

    def flush(text: str, first_line: int) -> None:
        trimmed = text.rstrip()
        if not trimmed.strip():
            return
        start_line = chunk.start_line + first_line
        sub_chunks.append(
            replace(
                chunk,
                content=trimmed,
                start_line=start_line,
                end_line=start_line + trimmed.count("\n"),
                is_definition=False,
                has_overlap=False,
            )
        )

    for i, line in enumerate(lines):
        piece = line if i == len(lines) - 1 else line + "\n"

        if len(piece) > max_size:
            # Edge case: one line alone exceeds the limit
            if buffer:
                flush(buffer, buffer_start)
                buffer = ""
            for offset in range(0, len(piece), max_size):
                flush(piece[offset : offset + max_size], i)
            buffer_start = i + 1
            continue

        if len(buffer) + len(piece) > max_size and buffer:
            flush(buffer, buffer_start)
            buffer = piece
            buffer_start = i
        else:
            if not buffer:
                buffer_start = i
            buffer += piece

    if buffer:
        flush(buffer, buffer_start)

    return sub_chunks


def add_overlap(
    chunks: list[Chunk], overlap_size: int, max_size: int | None = None
) -> list[Chunk]:
    """
    Prefix every chunk but the first with the tail of its predecessor.

    The tail is the last overlap_size characters of the previous chunk as it
    was before this pass, joined by a newline. The start line moves back by
    the number of lines the prefix adds, never below line 1.

    With max_size given, the tail is shortened when needed so that no chunk
    grows past max_size + overlap_size, joining newline included.
    """
    if overlap_size <= 0 or len(chunks) <= 1:
        return list(chunks)

    overlapped = [chunks[0]]
    for previous, current in zip(chunks, chunks[1:]):
        tail_size = overlap_size
        if max_size is not None:
            tail_size = min(tail_size, max_size + overlap_size - len(current.content) - 1)
        if tail_size <= 0:
            overlapped.append(replace(current, has_overlap=True))
            continue

        prefix = previous.content[-tail_size:] + "\n"
        overlapped.append(
            replace(
                current,
                content=prefix + current.content,
                start_line=max(1, current.start_line - prefix.count("\n")),
                has_overlap=True,
            )
        )
    return overlapped


def refine(
    chunks: list[Chunk],
    max_size: int = DEFAULT_CHUNK_SIZE,
    overlap_size: int = DEFAULT_CHUNK_OVERLAP,
) -> list[Chunk]:
    """
    Enforce max_size on every chunk, then add overlap once.

    Rules:
    1. Chunks longer than max_size are re-split on line boundaries
    2. Overlap is applied globally after all splitting
    3. A sequence that already carries overlap is returned unchanged
    """
    if max_size <= 0:
        raise ValueError(f"max_size must be positive, got {max_size}")
    if overlap_size < 0:
        raise ValueError(f"overlap_size must be >= 0, got {overlap_size}")

    if any(chunk.has_overlap for chunk in chunks):
        return list(chunks)

    sized: list[Chunk] = []
    for chunk in chunks:
        if len(chunk.content) <= max_size:
            sized.append(chunk)
        else:
            sized.extend(split_large_chunk(chunk, max_size))

    return add_overlap(sized, overlap_size, max_size)
