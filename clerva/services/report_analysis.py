"""
檢舉自動分析
依檢舉類型掃描雙方對話與被檢舉者資料，累計風險分數並給出建議。
純規則比對，不呼叫外部模型。
"""
import re
from typing import Any, Callable, Dict, List, Optional
from clerva.models import ReportType, User, as_utc, utcnow

PAYMENT_WORDS = ["payment", "pay", "send money", "transfer", "paypal", "venmo", "cashapp", "zelle",
                 "bitcoin", "crypto", "bank account", "wire"]
URGENCY_WORDS = ["urgent", "immediately", "right now", "asap", "hurry", "quick", "fast"]
INSULT_WORDS = ["stupid", "idiot", "dumb", "ugly", "loser", "pathetic", "worthless", "hate you"]
PROMO_WORDS = ["buy", "sale", "discount", "free", "offer", "limited time", "click here", "subscribe"]

HATE_PATTERNS = [
    re.compile(r"\b(hate|hating)\s+(all|every|those)\b", re.I),
    re.compile(r"\b(should\s+die|deserve\s+to\s+die)\b", re.I),
    re.compile(r"\b(go\s+back\s+to)\b", re.I),
]
VIOLENCE_PATTERNS = [
    re.compile(r"\b(kill|murder|hurt|harm|attack)\s+(you|him|her|them)\b", re.I),
    re.compile(r"\b(i('ll|m\s+going\s+to)|gonna)\s+(kill|hurt|beat|attack)\b", re.I),
    re.compile(r"\b(watch\s+your\s+back|you('re|r)\s+dead)\b", re.I),
    re.compile(r"\b(gun|knife|weapon|bomb)\b", re.I),
]
EXPLICIT_RE = re.compile(r"\b(nsfw|explicit|nude|naked)\b", re.I)

# (門檻, 等級, 建議)，由高到低
RISK_TIERS = [
    (80, "CRITICAL", "Immediate action recommended. Strong evidence of violation."),
    (50, "HIGH", "Review conversation carefully. Multiple indicators present."),
    (25, "MEDIUM", "Some concerning patterns detected. Manual review needed."),
    (0, "LOW", "Limited evidence found. May be a misunderstanding or false report."),
]


class Analysis:
    """單次分析的累計狀態"""

    def __init__(self) -> None:
        self.score = 0
        self.findings: List[Dict[str, Any]] = []
        self.flags: List[str] = []

    def add(self, points: int, kind: str, description: str, severity: str,
            evidence: Optional[str] = None, flags: tuple = ()) -> None:
        self.score += points
        finding = {"type": kind, "description": description, "severity": severity}
        if evidence is not None:
            finding["evidence"] = evidence
        self.findings.append(finding)
        self.flags.extend(flags)

    def result(self) -> Dict[str, Any]:
        level, recommendation = next((lv, rec) for limit, lv, rec in RISK_TIERS if self.score >= limit)
        return {
            "riskLevel": level,
            "confidence": min(self.score, 100),
            "findings": self.findings,
            "recommendation": recommendation,
            "automatedFlags": self.flags,
        }


def _messages(conversation: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return (conversation or {}).get("messages") or []


def _text(conversation: Optional[Dict[str, Any]]) -> str:
    return " ".join(m.get("content") or "" for m in _messages(conversation)).lower()


def _scam(a: Analysis, conversation, user) -> None:
    if not _messages(conversation):
        return
    text = _text(conversation)
    payments = [w for w in PAYMENT_WORDS if w in text]
    if payments:
        a.add(len(payments) * 15, "Payment Keywords",
              f"Found payment-related terms: {', '.join(payments)}", "danger",
              evidence=", ".join(payments), flags=("PAYMENT_MENTIONED",))
    if any(w in text for w in URGENCY_WORDS):
        a.add(10, "Urgency Language", "Messages contain urgency pressure tactics", "warning",
              flags=("URGENCY_TACTICS",))
    links = conversation["stats"].get("linksShared") or 0
    if links:
        a.add(links * 5, "External Links", f"{links} external links shared in conversation", "warning")


def _harassment(a: Analysis, conversation, user) -> None:
    messages = _messages(conversation)
    if not messages:
        return
    stats = conversation["stats"]
    mine, theirs = stats.get("messagesByReporter") or 0, stats.get("messagesByReportedUser") or 0
    if mine and theirs:
        ratio = max(mine, theirs) / min(mine, theirs)
        if ratio > 5:
            a.add(20, "Message Imbalance",
                  f"Severe message imbalance ({ratio:.1f}:1 ratio) - possible one-sided harassment", "warning",
                  flags=("MESSAGE_IMBALANCE",))

    insults = [w for w in INSULT_WORDS if w in _text(conversation)]
    if insults:
        a.add(len(insults) * 10, "Insulting Language", "Found insulting terms in conversation", "danger",
              evidence=f"{len(insults)} instances detected", flags=("INSULTS_DETECTED",))

    longest, run, last = 0, 0, None
    for m in messages:
        run = run + 1 if m.get("senderId") == last else 1
        last = m.get("senderId")
        longest = max(longest, run)
    if longest > 5:
        a.add(15, "Repeated Messaging",
              f"{longest} consecutive messages without response - possible harassment pattern", "warning")


def _spam(a: Analysis, conversation, user) -> None:
    messages = _messages(conversation)
    if not messages:
        return
    seen = set()
    duplicates = 0
    for m in messages:
        body = (m.get("content") or "").strip().lower()
        if body in seen:
            duplicates += 1
        seen.add(body)
    if duplicates > 2:
        a.add(duplicates * 10, "Duplicate Messages",
              f"{duplicates} duplicate messages detected - spam pattern", "danger",
              flags=("DUPLICATE_MESSAGES",))
    text = _text(conversation)
    if sum(1 for w in PROMO_WORDS if w in text) > 2:
        a.add(25, "Promotional Content", "Messages contain promotional/advertising language", "warning",
              flags=("PROMOTIONAL_CONTENT",))


def _hate_speech(a: Analysis, conversation, user) -> None:
    text = _text(conversation)
    hits = sum(1 for p in HATE_PATTERNS if p.search(text))
    if hits:
        a.add(hits * 30, "Hate Speech Indicators", "Messages contain potential hate speech patterns", "danger",
              flags=("HATE_SPEECH_DETECTED",))


def _violence(a: Analysis, conversation, user) -> None:
    text = _text(conversation)
    hits = sum(1 for p in VIOLENCE_PATTERNS if p.search(text))
    if hits:
        a.add(hits * 40, "Violent Threats", "CRITICAL: Messages contain potential violent threats", "danger",
              flags=("VIOLENCE_THREAT_DETECTED", "REQUIRES_IMMEDIATE_REVIEW"))


def _inappropriate(a: Analysis, conversation, user) -> None:
    messages = _messages(conversation)
    if not messages:
        return
    files = sum(1 for m in messages if (m.get("type") or "TEXT") != "TEXT")
    if files:
        a.add(10, "File Attachments", f"{files} files shared - manual review of content recommended", "info")
    if EXPLICIT_RE.search(_text(conversation)):
        a.add(30, "Explicit Content Indicators", "Messages may contain references to explicit content", "warning",
              flags=("EXPLICIT_CONTENT_POSSIBLE",))


def _fake_account(a: Analysis, conversation, user: Optional[User]) -> None:
    if user is None:
        return
    days = (utcnow() - as_utc(user.created_at)).total_seconds() / 86400
    if days < 7:
        a.add(20, "New Account", f"Account created {int(days)} days ago", "warning")
    if not user.avatar_url:
        a.add(10, "No Profile Picture", "Account has no profile picture", "info")


def _generic(a: Analysis, conversation, user) -> None:
    flagged = len(((conversation or {}).get("stats") or {}).get("flaggedMessageIds") or [])
    if flagged:
        a.add(flagged * 10, "Flagged Content",
              f"{flagged} messages contain potentially concerning content", "warning")


ANALYZERS: Dict[str, Callable[[Analysis, Optional[Dict[str, Any]], Optional[User]], None]] = {
    ReportType.SCAM.value: _scam,
    ReportType.HARASSMENT.value: _harassment,
    ReportType.SPAM.value: _spam,
    ReportType.HATE_SPEECH.value: _hate_speech,
    ReportType.VIOLENCE.value: _violence,
    ReportType.INAPPROPRIATE_CONTENT.value: _inappropriate,
    ReportType.FAKE_ACCOUNT.value: _fake_account,
}


def analyze_report(report_type: str, conversation: Optional[Dict[str, Any]],
                   reported_user: Optional[User]) -> Dict[str, Any]:
    """
    依檢舉類型分析對話

    Args:
        report_type: ReportType 值，未列出的類型走通用檢查
        conversation: ReportService._conversation 的結果，可為 None
        reported_user: 被檢舉者

    Returns:
        {riskLevel, confidence, findings, recommendation, automatedFlags}
    """
    analysis = Analysis()
    ANALYZERS.get(report_type, _generic)(analysis, conversation, reported_user)
    return analysis.result()
