"""
Checks scored from the bot's public profile (SessionState.metadata): fetch/parse, branding, description quality.
Scoring is point-based heuristics; a check passes when its score clears the threshold noted on each function.
"""
from __future__ import annotations

import re

from botgrader.context import CheckContext, contains_any
from botgrader.metadata import parse_bot_page
from botgrader.schemas import CheckResult


FETCH_METADATA = "Fetch bot metadata"
PARSE_METADATA = "Parse bot information"
NAME_FORMATTING = "Bot name consistency and formatting"
PROFILE_PICTURE = "Profile picture appeal and quality"
BRAND_CONSISTENCY = "Brand consistency with model family"
VERIFICATION = "Official verification and credibility"
DESCRIPTION_CLARITY = "Description clarity for non-technical users"
ADVANCED_DOCS = "Advanced behavior documentation"
LIMITATION_DOCS = "Limitation documentation"

PASS_THRESHOLD = 70

# Model family -> words expected alongside it in a well-branded name
KNOWN_BRANDS: dict[str, tuple[str, ...]] = {
    "claude": ("anthropic", "sonnet", "haiku", "opus"),
    "gpt": ("openai", "turbo", "mini", "davinci"),
    "gemini": ("google", "pro", "ultra", "nano"),
    "llama": ("meta", "facebook", "chat"),
}
_CLEAN_SLUG = re.compile(r"^[A-Za-z0-9_-]+$")


def _no_metadata(ctx: CheckContext, name: str, what: str) -> CheckResult:
    return ctx.result(
        name,
        False,
        0,
        f"No metadata available for {what}",
        error="Metadata required",
        request=f"Analyze {what}",
        response="No metadata available",
        expected="Bot metadata should be available from the fetch step",
        actual="No metadata found in session",
    )


async def fetch_metadata(ctx: CheckContext) -> CheckResult:
    if ctx.session.metadata is not None:
        return ctx.result(FETCH_METADATA, True, 100, "Metadata already available from previous fetch")

    page = await ctx.fetcher.fetch_page(ctx.bot_id)
    ctx.session.metadata_fetched = True
    request = f"GET {page.url}"
    if page.error is not None:
        return ctx.result(
            FETCH_METADATA,
            False,
            0,
            "Network error or timeout when fetching bot page",
            error=page.error,
            request=request,
            response="Request failed",
            expected=f"Bot page should be accessible within {ctx.fetcher.timeout:g} seconds",
            actual="Request timed out or failed due to network error",
        )
    if not page.ok:
        return ctx.result(
            FETCH_METADATA,
            False,
            0,
            f"Failed to fetch bot page: HTTP {page.status_code}",
            error=f"HTTP {page.status_code}",
            request=request,
            response=f"HTTP {page.status_code}",
            expected="Bot page should return HTTP 200",
            actual=f"Received HTTP {page.status_code} instead",
        )
    ctx.session.metadata = parse_bot_page(page.html, ctx.bot_id)
    return ctx.result(
        FETCH_METADATA,
        True,
        100,
        "Successfully fetched and parsed bot page metadata",
        request=request,
        response=f"HTTP 200 - Page fetched successfully ({len(page.html)} characters)",
        expected="Bot page should be accessible and contain metadata",
        actual="Page loaded successfully with valid HTML content",
    )


async def parse_metadata(ctx: CheckContext) -> CheckResult:
    """Passes (95) with a display name and a description over 10 chars."""
    md = await ctx.metadata()
    if md is None:
        return _no_metadata(ctx, PARSE_METADATA, "bot information")
    complete = bool(md.display_name) and len(md.description) > 10
    desc = (md.description[:100] + "...") if md.description else "Not found"
    return ctx.result(
        PARSE_METADATA,
        complete,
        95 if complete else 45,
        "Bot metadata parsed successfully" if complete else "Bot metadata incomplete or missing",
        request="Parse extracted bot metadata",
        response=f'Name: "{md.display_name or "Not found"}", Description: "{desc}"',
        expected="Bot should have valid display name and description",
        actual="Bot has complete metadata" if complete else "Bot metadata is incomplete",
    )


async def name_formatting(ctx: CheckContext) -> CheckResult:
    md = await ctx.metadata()
    if md is None:
        return _no_metadata(ctx, NAME_FORMATTING, "name analysis")
    score = 100
    issues = []
    name, display = md.name, md.display_name
    if name and display and name.lower() != display.lower() and abs(len(name) - len(display)) > 3:
        score -= 20
        issues.append("Significant mismatch between URL name and display name")
    if not display or len(display) < 2:
        score -= 30
        issues.append("Display name missing or too short")
    elif not display[0].isupper():
        score -= 10
        issues.append("Display name should start with capital letter")
    if display and len(display) > 25:
        score -= 10
        issues.append("Display name is quite long")
    ok = score > PASS_THRESHOLD
    return ctx.result(
        NAME_FORMATTING,
        ok,
        score,
        "; ".join(issues) if issues else "Name formatting follows good practices",
        request="Analyze bot name formatting",
        response=f'URL name: "{name}", display name: "{display}"',
        expected="Bot should have clear, properly formatted name",
        actual="Bot has well-formatted name" if ok else "Bot name has formatting issues",
    )


async def profile_picture(ctx: CheckContext) -> CheckResult:
    md = await ctx.metadata()
    if md is None:
        return _no_metadata(ctx, PROFILE_PICTURE, "profile picture analysis")
    url = md.profile_picture_url
    expected = "Bot should have appealing, well-cropped profile picture"
    if not url:
        return ctx.result(
            PROFILE_PICTURE, False, 0, "No profile picture found",
            request="Inspect og:image", response="No og:image", expected=expected, actual="No profile picture found",
        )
    score = 80
    issues = []
    lowered = url.lower()
    if contains_any(lowered, ("default", "placeholder")):
        score -= 30
        issues.append("Using default/placeholder image")
    if contains_any(lowered, (".png", ".jpg", ".webp")):
        score += 10
    ok = score > PASS_THRESHOLD
    return ctx.result(
        PROFILE_PICTURE,
        ok,
        score,
        "; ".join(issues) if issues else "Profile picture appears properly configured",
        request="Inspect og:image",
        response=url,
        expected=expected,
        actual="Profile picture is present and properly configured" if ok else "Profile picture has issues",
    )


async def brand_consistency(ctx: CheckContext) -> CheckResult:
    md = await ctx.metadata()
    if md is None:
        return _no_metadata(ctx, BRAND_CONSISTENCY, "brand analysis")
    name, display = md.name.lower(), md.display_name.lower()
    score = 75
    notes = []
    for brand, variants in KNOWN_BRANDS.items():
        if brand in name or brand in display:
            if any(v in name or v in display for v in variants):
                score += 15
                notes.append(f"Follows {brand} naming conventions")
            else:
                score -= 10
                notes.append(f"Missing expected {brand} variant information")
            break
    else:
        if len(md.name) < 15 and _CLEAN_SLUG.match(md.name):
            score += 10
            notes.append("Clean, branded name for custom bot")
        else:
            score -= 5
            notes.append("Custom bot with unclear branding")
    ok = score > PASS_THRESHOLD
    return ctx.result(
        BRAND_CONSISTENCY,
        ok,
        score,
        "; ".join(notes),
        request="Compare name against known model families",
        response=f'URL name: "{md.name}", display name: "{md.display_name}"',
        expected="Bot should follow consistent branding patterns",
        actual="Bot follows good branding practices" if ok else "Bot branding needs improvement",
    )


async def verification(ctx: CheckContext) -> CheckResult:
    md = await ctx.metadata()
    if md is None:
        return _no_metadata(ctx, VERIFICATION, "verification analysis")
    score = 60
    notes = []
    if md.is_verified:
        score += 30
        notes.append("Bot is verified/official")
    else:
        score -= 10
        notes.append("Bot is not verified")
    if md.follower_count is not None:
        n = md.follower_count
        if n > 10_000:
            score += 10
            notes.append(f"High engagement: {n:,} followers")
        elif n > 1_000:
            score += 5
            notes.append(f"Good engagement: {n:,} followers")
        else:
            notes.append(f"Low engagement: {n:,} followers")
    ok = score > PASS_THRESHOLD
    return ctx.result(
        VERIFICATION,
        ok,
        score,
        "; ".join(notes),
        request="Inspect verification marker and follower count",
        response=f"verified={md.is_verified}, followers={md.follower_count}",
        expected="Bot should have verification or high credibility indicators",
        actual="Bot has good credibility indicators" if ok else "Bot lacks verification or credibility markers",
    )


async def _description(ctx: CheckContext) -> str:
    md = await ctx.metadata()
    return md.description if md else ""


async def description_clarity(ctx: CheckContext) -> CheckResult:
    description = await _description(ctx)
    ok = len(description) > 50
    return ctx.result(
        DESCRIPTION_CLARITY,
        ok,
        85 if ok else 40,
        "Description appears comprehensive" if ok else "Description too short or missing",
        request="Measure description length",
        response=f"{len(description)} characters",
        expected="Bot should have clear, comprehensive description for users",
        actual="Description is comprehensive" if ok else "Description is too brief",
    )


async def advanced_documentation(ctx: CheckContext) -> CheckResult:
    description = await _description(ctx)
    ok = contains_any(description, ("--", "param", "command"))
    return ctx.result(
        ADVANCED_DOCS,
        ok,
        90 if ok else 60,
        "Contains parameter or command documentation" if ok else "No advanced parameter documentation found",
        request="Search description for parameters or commands",
        response=description,
        expected="Bot should document advanced features and parameters",
        actual="Advanced documentation present" if ok else "No advanced documentation found",
    )


async def limitation_documentation(ctx: CheckContext) -> CheckResult:
    description = await _description(ctx)
    ok = contains_any(description, ("limitation", "cannot", "does not"))
    return ctx.result(
        LIMITATION_DOCS,
        ok,
        85 if ok else 70,
        "Documents limitations clearly" if ok else "No clear limitation documentation",
        request="Search description for stated limitations",
        response=description,
        expected="Bot should clearly document its limitations",
        actual="Limitations are documented" if ok else "No limitation documentation found",
    )
