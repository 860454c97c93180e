from typing import Dict, List, Optional, Sequence

from ..models import ChannelMatch, TimestampCluster


def group_by_time(matches: Sequence[ChannelMatch], max_gap: float = 5.0) -> List[List[ChannelMatch]]:
    """
    Split timestamped matches of one video into time-contiguous groups.

    Matches are sorted by timestamp; a match joins the current group when it
    lies at most ``max_gap`` seconds after the group's last timestamp.
    """
    timed = sorted((m for m in matches if m.timestamp is not None), key=lambda m: m.timestamp)
    if not timed:
        return []

    groups: List[List[ChannelMatch]] = [[timed[0]]]
    for match in timed[1:]:
        current = groups[-1]
        if match.timestamp - current[-1].timestamp <= max_gap:
            current.append(match)
        else:
            groups.append([match])
    return groups


def summarize_group(group: Sequence[ChannelMatch], preview_url: Optional[str] = None) -> TimestampCluster:
    """Range, mean weighted score, first-member preview, and union of channels of one group."""
    sources = []
    for match in group:
        if match.channel not in sources:
            sources.append(match.channel)
    return TimestampCluster(
        start_time=group[0].timestamp,
        end_time=group[-1].timestamp,
        confidence=sum(m.score for m in group) / len(group),
        preview_url=preview_url,
        description=group[0].description,
        sources=sources,
    )


def aggregate_scores(matches: Sequence[ChannelMatch]) -> Dict[str, float]:
    """Per-video sum of weighted match scores."""
    totals: Dict[str, float] = {}
    for match in matches:
        totals[match.video_id] = totals.get(match.video_id, 0.0) + match.score
    return totals
