"""
Risk message lookup.
Renders concentration findings into display text from a single table.
"""

from typing import Any, Dict, Iterable, List

from analysis.models import RiskFinding, RiskKind


class RiskMessageError(Exception):
    """Raised when a finding has no message template."""
    pass


# kind -> (title, message, recommendation); formatted with subject and percent
RISK_MESSAGES: Dict[RiskKind, Dict[str, str]] = {
    RiskKind.ASSET_CONCENTRATION: {
        'title': "High {subject} Concentration",
        'message': "{percent}% of your portfolio is in {subject}. This reduces diversification benefits.",
        'recommendation': "Consider adding funds from other asset classes.",
    },
    RiskKind.CATEGORY_CONCENTRATION: {
        'title': "{subject} Overweight",
        'message': "{percent}% allocated to {subject}. Consider spreading across categories.",
        'recommendation': "Explore funds from different categories to balance exposure.",
    },
    RiskKind.SECTOR_CONCENTRATION: {
        'title': "{subject} Sector Overexposure",
        'message': "{percent}% exposure to {subject} sector. Sector-specific risks are elevated.",
        'recommendation': "Look for funds with lower {subject} exposure.",
    },
    RiskKind.SINGLE_FUND_DOMINANCE: {
        'title': "Single Fund Dominance",
        'message': "{subject} represents {percent}% of your portfolio.",
        'recommendation': "Consider splitting investments across multiple funds.",
    },
}


def describe_risk(finding: RiskFinding) -> Dict[str, Any]:
    """
    Render one finding.

    Returns:
        Dictionary with kind, severity, subject, percent, title, message
        and recommendation

    Raises:
        RiskMessageError: If the finding kind has no template
    """
    templates = RISK_MESSAGES.get(finding.kind)
    if templates is None:
        raise RiskMessageError(f"No message template for risk kind: {finding.kind}")

    values = {'subject': finding.subject, 'percent': f"{finding.percent:.2f}"}
    rendered = {name: text.format(**values) for name, text in templates.items()}

    return {
        'kind': finding.kind.value,
        'severity': finding.severity.value,
        'subject': finding.subject,
        'percent': finding.percent,
        **rendered,
    }


def describe_risks(findings: Iterable[RiskFinding]) -> List[Dict[str, Any]]:
    """Render findings, high severity first, keeping rule order within a severity."""
    ordered = sorted(findings, key=lambda f: 0 if f.severity.value == 'high' else 1)
    return [describe_risk(f) for f in ordered]
