from dataclasses import asdict, dataclass, field
from typing import Any, Optional

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

# Canonical commit id length. Anything shorter is treated as a prefix.
FULL_COMMIT_LENGTH = 40

# Result values an Attestation is normalized to.
RESULT_PASS = "pass"
RESULT_FAIL = "fail"
RESULT_UNKNOWN = "unknown"

# ControlStatus.status values.
STATUS_PASSING = "passing"
STATUS_FAILING = "failing"
STATUS_NOT_FOUND = "not_found"


@dataclass(frozen=True)
class Session:
    """Pre-authenticated caller identity. Validated and refreshed upstream."""

    user_id: str
    tenant_id: str
    access_token: str


@dataclass
class CommitRecord:
    commit: str
    timestamp: Optional[str] = None
    branch: Optional[str] = None
    branches: list[str] = field(default_factory=list)


@dataclass
class ResolvedAssetContext:
    """Canonical identity for a raw (identifier, branch, commit) triple.

    asset_uuid is "" when the identifier could not be matched. resolved_commit
    is either None or a full-length commit id. debug records which resolution
    path fired and why; it is diagnostic only.
    """

    asset_identifier: str
    asset_uuid: str = ""
    asset_name: str = ""
    project_name: Optional[str] = None
    repository_name: Optional[str] = None
    application_version_uuid: Optional[str] = None
    repository_id: Optional[str] = None
    default_branch: Optional[str] = None
    resolved_branch: Optional[str] = None
    resolved_commit: Optional[str] = None
    original_branch: Optional[str] = None
    original_commit: Optional[str] = None
    debug: dict[str, Any] = field(default_factory=dict)

    @property
    def resolved(self) -> bool:
        return bool(self.asset_uuid)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResolvedAssetContext":
        return cls(**data)


@dataclass
class ControlStatus:
    """A control as seen by one compliance snapshot.

    Required controls are seeded from policy gates with status "not_found" and
    required=True; the aggregator projects evidence onto them. Controls with
    evidence but no policy requirement are added with required=False.
    """

    key: str
    name: str
    uuid: str = ""
    description: str = ""
    severity: str = "medium"  # critical | high | medium | low | info
    status: str = STATUS_NOT_FOUND  # passing | failing | not_found
    passing_checks: int = 0
    failing_checks: int = 0
    total_checks: int = 0
    required: bool = True
    policy_name: Optional[str] = None
    control_path: Optional[str] = None


@dataclass
class ControlRef:
    uuid: Optional[str] = None
    path: Optional[str] = None
    name: Optional[str] = None


@dataclass
class Attestation:
    """One piece of collected evidence, normalized from any upstream shape."""

    uuid: str
    result: str  # pass | fail | unknown
    timestamp: Optional[str] = None
    control: ControlRef = field(default_factory=ControlRef)
    commit: Optional[str] = None
    asset_uuid: Optional[str] = None
    detail: dict[str, Any] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return self.result == RESULT_PASS


@dataclass
class AssetSummary:
    uuid: str
    name: str
    type: str = "unknown"
    branch: Optional[str] = None
    commit: Optional[str] = None


@dataclass
class ComplianceStatus:
    asset: AssetSummary
    score: float
    passing: int
    failing: int
    total: int
    controls: list[ControlStatus]
    required_controls: int
    required_passing: int
    required_not_found: int
    last_updated: str
    resolution: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ComplianceStatus":
        values = dict(data)
        values["asset"] = AssetSummary(**values["asset"])
        values["controls"] = [ControlStatus(**c) for c in values["controls"]]
        return cls(**values)


@dataclass
class TrendDataPoint:
    date: str  # YYYY-MM-DD
    score: float  # passing / total, 0.0 - 1.0
    passing: int
    failing: int
    total: int


@dataclass
class ControlChange:
    control_path: str
    control_name: str
    start_score: float  # percent
    end_score: float  # percent
    change_percent: float  # percentage points, late minus early
    direction: str  # improved | declined | stable


@dataclass
class TrendResult:
    data_points: list[TrendDataPoint] = field(default_factory=list)
    most_improved: list[ControlChange] = field(default_factory=list)
    most_declined: list[ControlChange] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TrendResult":
        return cls(
            data_points=[TrendDataPoint(**p) for p in data.get("data_points", [])],
            most_improved=[ControlChange(**c) for c in data.get("most_improved", [])],
            most_declined=[ControlChange(**c) for c in data.get("most_declined", [])],
        )


@dataclass
class Control:
    """A control from the tenant's controls catalog."""

    uuid: str
    name: str
    description: str = ""
    category: str = ""
    severity: str = "medium"
    framework: str = ""
    requirements: list[Any] = field(default_factory=list)


@dataclass
class PolicyViolation:
    """A failing attestation seen as a violation of the control it attests.

    severity is the control's catalog severity, or "unset" when the catalog
    has none for it. age_days is whole days since timestamp.
    """

    uuid: str
    control_path: str
    control_name: str
    asset_uuid: Optional[str] = None
    asset_name: str = "Unknown"
    asset_type: str = "repository"
    commit: Optional[str] = None
    branch: Optional[str] = None
    timestamp: Optional[str] = None
    severity: str = "unset"
    reason: Optional[str] = None
    age_days: Optional[int] = None


@dataclass
class CatalogEntry:
    identifier: str
    name: str
    type: str
    uuid: Optional[str] = None


@dataclass
class ApplicationMatch:
    found: bool
    uuid: Optional[str] = None
    name: Optional[str] = None
    code: Optional[str] = None
    type: Optional[str] = None
    assets: list[CatalogEntry] = field(default_factory=list)


@dataclass
class OrganizationSummary:
    tenant_id: str
    overall_score: float
    total_assets: int
    compliant_assets: int
    non_compliant_assets: int
    high_issues: int
    passing: int
    failing: int
    last_updated: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class AuthorStats:
    name: str
    email: str
    login: Optional[str] = None
    commit_count: int = 0
    pr_count: int = 0
    review_count: int = 0
    latest_commit: Optional[str] = None  # 7-char short SHA


@dataclass
class AuthorReport:
    authors: list[AuthorStats]
    total_commits: int
    total_prs: int
    date_from: str
    date_to: str
    assets: list[str]
