"""Text rendering of proposals for the review command."""

from .models.proposal import Proposal


def preview(text: str, limit: int = 150) -> str:
    """Single-line preview of a possibly multi-line value."""
    flat = " ".join(text.split())
    if len(flat) > limit:
        return flat[: limit - 3] + "..."
    return flat


def format_proposal_display(proposal: Proposal, full: bool = False) -> str:
    """Format a proposal for the review listing.

    Args:
        proposal: Proposal to format
        full: Show complete current and proposed values instead of previews

    Returns:
        Formatted string for display
    """
    current = proposal.current_value if full else preview(proposal.current_value, 280)
    proposed = proposal.proposed_value if full else preview(proposal.proposed_value, 280)

    lines = [
        "",
        "=" * 60,
        f"Proposal:      {proposal.proposal_id}",
        f"Record:        {proposal.record_id}",
        f"Field:         {proposal.field}",
        f"Confidence:    {proposal.confidence * 100:.1f}%",
        f"Created:       {proposal.created_at.strftime('%Y-%m-%d %H:%M:%S')} UTC",
    ]
    if proposal.metadata.get("model"):
        lines.append(f"Model:         {proposal.metadata['model']}")
    if proposal.reason:
        lines.append(f"Reason:        {proposal.reason}")

    lines.append("")
    lines.append("Current:")
    lines.append("-" * 40)
    lines.append(current)
    lines.append("-" * 40)
    lines.append("Proposed:")
    lines.append("-" * 40)
    lines.append(proposed)
    lines.append("-" * 40)
    lines.append("")

    return "\n".join(lines)
