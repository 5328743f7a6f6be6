"""
Rule-based relevance filters.

Social posts are scored against ordered pattern sets to separate first-hand
sighting reports from commentary, news sharing, and rumor. News articles need an
agency mention, and articles from outlets that are not trusted also need an
enforcement action keyword. The pattern lists below are plain data so the scoring
code and the corpus can be tuned independently.
"""

from __future__ import annotations

import re
from typing import List, Pattern, Sequence

from src.ingestion.models import NewsRelevanceResult, RelevanceResult
from src.ingestion.news_sources import classify_source

FIRST_HAND_WEIGHT = 5
SIGHTING_WEIGHT = 2
COMMENTARY_WEIGHT = -3
EXCLUDED_SCORE = -10
MIN_RELEVANT_SCORE = 3


def _compile(patterns: Sequence[str]) -> List[Pattern[str]]:
    return [re.compile(pattern, re.IGNORECASE) for pattern in patterns]


# Any hit rejects the post outright.
EXCLUSION_PATTERNS = _compile(
    [
        # Retweets, reposts, replies
        r"^RT\s*@",
        r"\bvia\s*@\w+",
        r"\brepost(ing|ed)?\b",
        r"^@\w+\s+",
        # News sharing
        r"\b(breaking|new|latest):\s.{0,30}\b(report|article|story|via|according)\b",
        r"\bread\s*(this|more|the)\b.*\b(article|story|thread|report)\b",
        r"\bfull\s*(story|article|report)\b",
        r"\blink in bio\b",
        r"\b(news|report|article)\s*(here|below|attached)\b",
        # Past events
        r"\b(last (week|month|year)|yesterday|days ago|weeks ago|months ago)\b",
        r"\b(in (2019|2020|2021|2022|2023|2024|2025|2026))\b",
        r"\bback (in|when)\b",
        r"\b(used to|remember when)\b",
        # Fundraising
        r"\b(donate|donation|gofundme|fundraiser|venmo|cashapp|paypal|zelle)\b",
        r"\b(help (us|them) raise|support (this|the) family)\b",
        # Hiring and official statements
        r"\b(now hiring|job opening|career|apply now|we're hiring)\b",
        r"\b(press release|official statement|statement from)\b",
        # Outside the US
        r"\b(uk|united kingdom|london|england|canada|toronto|mexico city|europe|australia)\b",
        r"\b(brexit|eu\s+immigration|european union)\b",
        # Asking rather than reporting
        r"\b(has anyone|have you|did anyone|does anyone)\s+(seen?|heard?|know)\b",
        r"\b(is there|are there)\s+.{0,20}(ice|checkpoint|activity)\b",
        r"\b(any(one|body)?|where)\s+.{0,15}(ice|checkpoint|sighting)",
        r"\bwhat('s| is| are)\s+(ice|they)\s+doing\b",
        r"\bwhere\s+(is|are)\s+(ice|they)\b",
        # Hypotheticals
        r"\bif (ice|they|agents)\s+(come|show up|raid|arrive)\b",
        r"\bwhat (to do|if|happens)\s+.{0,15}(ice|raid|checkpoint)\b",
        r"\b(know your rights|your rights|legal rights)\b",
        # Advice and guides
        r"\b(how to|what to do|tips for|guide to)\b",
        r"\b(if you see|when you see|in case of)\b",
        # Memes and jokes
        r"\b(lmao|lol|rofl|dead|crying|bruh)\b",
        r"\b(imagine|literally me|no one:|nobody:)\b",
        # Promotion
        r"\b(check out|follow|subscribe|like and share)\b",
        r"\b(new (video|podcast|episode|post)|watch my)\b",
        # Legal information
        r"\b(miranda rights|legal (advice|help|aid)|attorney|lawyer)\b",
        r"\b(sanctuary (city|state)|ice (policy|policies))\b",
        # Statistics
        r"\b(\d+%|\d+,\d+|\d+ (million|thousand|hundred))\b",
        r"\b(statistics|data shows|according to data)\b",
        # Viral content
        r"\b(going viral|trending|blow up|famous)\b",
        r"\b(ratio|ratioed|main character)\b",
        # Bots
        r"\b(f4f|follow4follow|followback|follow back)\b",
        r"\b(automated|bot|scheduled)\b",
        # Link shorteners
        r"\b(bit\.ly|tinyurl|t\.co|goo\.gl|ow\.ly)\b",
    ]
)

FIRST_HAND_INDICATORS = _compile(
    [
        # First-person witness
        r"\bi (just )?(saw|see|spotted|witnessed|noticed)\s+(ice|agents?|officers?|cbp|border patrol|la migra)",
        r"\bwe (just )?(saw|see|spotted|witnessed|noticed)\s+(ice|agents?|officers?|cbp|border patrol|la migra)",
        r"\b(my|our) (neighbor|friend|family|coworker)\s+(saw|spotted)\s+(ice|agents?)",
        # Happening now
        r"\b(ice|agents?|cbp)\b.{0,30}\b(right now|rn|currently|at this moment|as we speak)\b",
        r"\b(right now|rn|currently)\b.{0,30}\b(ice|agents?|cbp)\b",
        r"\b(happening|ongoing|active)\s+(right now|now|rn|here)\b",
        # Urgent warnings
        r"\b(heads up|alert|warning|urgent)[!:]?\s*.{0,20}(ice|agents?|cbp|checkpoint|raid)",
        r"\b(avoid|stay away from|don't go)\s+.{0,30}(ice|agents?|checkpoint)",
        # Agents at a specific place
        r"\bice\s+(is |are )?(at|on|near|outside|in front of)\s+\w+",
        r"\b(ice |cbp )?(agents?|officers?)\s+(at|on|near|outside|parked at)\s+\w+",
        # Spanish
        r"\b(los vi|los veo|vi a|veo a)\b.{0,30}(ice|migra|agentes?|la migra)",
        r"\b(están|andan|hay)\s+(aquí|por aquí|en)\b.{0,15}(ice|migra|agentes?)",
        r"\b(ahorita|ahora mismo|en este momento)\b",
        r"\balerta[!:]?\s",
        r"\bcuidado\b.{0,20}(ice|migra|agentes?)",
        r"\b(ice|migra|agentes?).{0,20}\bcuidado\b",
        r"\beviten\s+(el área|la zona|ese lugar)",
        r"\bno vayan\s+(a|por)\b.{0,30}(ice|migra|agentes?|checkpoint|retén)",
        r"\bno vayan\s+(a|por)\b",
        # Someone close just told the author
        r"\b(neighbor|friend|primo|vecino)\s+(just\s+)?(texted|called|messaged|told me)\b.{0,30}(ice|agents?|cbp|la migra|checkpoint)",
        r"\b(happening|going on)\s+(right now|rn)\b.{0,30}(ice|agents?|cbp|checkpoint|raid)",
        r"\b(ice|agents?|cbp|checkpoint|raid).{0,30}\b(happening|going on)\s+(right now|rn)\b",
        r"\bice\s+(sighting|spotted|seen|activity)\s+(at|on|near|in)\b",
    ]
)

SIGHTING_INDICATORS = _compile(
    [
        # Actions
        r"\b(ice|agents?|they)\s+(pulled over|stopped|detained|arrested)\b",
        r"\b(ice|agents?|they)\s+(showed up|arrived|rolled up|parked)\b",
        r"\b(checking|asking for)\s+(ids|documents|papers|licenses)\b",
        r"\b(knocking on doors|going door to door|door-to-door)\b",
        # Vehicles
        r"\b(ice|unmarked|suspicious)\s+(van|vans|vehicle|suv|truck)\b",
        r"\b(white|black|dark)\s+(van|suv|truck)\b.{0,30}(ice|agents?|checkpoint)",
        # Street addresses and intersections
        r"\b\d{2,5}\s+(n\.?|s\.?|e\.?|w\.?)?\s*\w+\s*(st|street|ave|avenue|rd|road|blvd|dr|drive)\b",
        r"\b(intersection|corner)\s+(of\s+)?\w+\s+(and|&|y)\s+\w+",
        r"\b(near|at|on)\s+\w+\s+(and|&)\s+\w+\b",
        # Named places
        r"\b(at|near|outside|in front of)\s+(the\s+)?(walmart|target|home depot|costco|safeway|kroger|publix)",
        r"\b(at|near|outside)\s+(the\s+)?\w+\s+(plaza|mall|market|store|school|church)\b",
        # Recent times
        r"\b(this morning|this afternoon|right now|just now)\b",
        r"\b(\d+|few|couple)\s*(minutes?|mins?)\s*ago\b",
        r"\b(an?\s+)?hour\s*ago\b",
        # Quantities
        r"\b(multiple|several|\d+)\s*(ice\s+)?(agents?|officers?|vehicles?)\b",
        # Operations
        r"\b(checkpoint|roadblock)\s+(on|at|near)\b",
        r"\b(raid|operation)\s+(at|on|in)\b",
    ]
)

COMMENTARY_INDICATORS = _compile(
    [
        # Politics
        r"\b(trump('s)?|biden('s)?|obama('s)?|harris|desantis|pence|vance)\b",
        r"\b(administration|white house|dhs|homeland security)\b",
        r"\b(republican|democrat|gop|liberal|conservative|maga)\b",
        r"\b(congress|senate|house|legislation|bill|law|policy|policies)\b",
        r"\b(president|governor|senator|mayor|politician)\b",
        r"\b(election|vote|voting|ballot|campaign|2024|2028)\b",
        r"\b(poll|polls|polling|primary|caucus)\b",
        # Advocacy
        r"\b(aclu|united we dream|raices|immigrant rights)\b",
        r"\b(advocacy|activist|activists|organizing|organizers)\b",
        # Opinion
        r"\b(i think|i believe|i feel|imo|imho|in my opinion)\b",
        r"\b(should|must|need to|ought to|has to)\s+(be|do|stop|end|change)\b",
        r"\b(wrong|evil|terrible|horrible|disgusting|shameful|outrageous|inhumane)\b",
        r"\b(abolish|defund|reform|disband|end)\s*ice\b",
        # Emotional reactions
        r"\b(i('m| am)|we('re| are))\s*(so )?(angry|sad|scared|furious|disgusted|heartbroken|sick)\b",
        r"\b(this is|that's|it's)\s*(so )?(sad|wrong|evil|heartbreaking|infuriating|terrible)\b",
        r"\b(can't believe|unbelievable|unacceptable|outraged)\b",
        r"\b(heartbroken|devastated|horrified|sickened)\b",
        # Calls to action
        r"\b(call your|contact your|write to|email your)\s*(rep|representative|senator|congressman)\b",
        r"\b(sign (this|the) petition|take action|join (us|the)|stand (up|with))\b",
        r"\b(spread the word|share this|please share|retweet|boost this)\b",
        r"\b(we (need|must)|let's|let us)\s+(fight|stop|resist|stand)\b",
        # General statements about the agency
        r"\b(ice agents are|all ice|every ice|these agents|ice is)\s+(evil|wrong|terrible|criminal)",
        r"\bice\s+(is|are)\s+(destroying|ruining|terrorizing|targeting)",
        r"\b(this country|our country|america|in the us)\s+(is|has|needs)\b",
        r"\b(human rights|civil rights|constitution|democracy|freedom)\b",
        r"\b(fascism|fascist|nazi|gestapo|authoritarian|tyranny|dictatorship)\b",
        # Media language
        r"\b(according to|sources say|reported that|reports indicate|reportedly)\b",
        r"\b(breaking news|developing story|update:|just in:)",
        r"\bnews\s*(article|story|report|outlet|source)\b",
        r"\b(journalist|reporter|media|coverage)\b",
        # Rhetorical questions
        r"\bwhy (do|does|is|are|won't|can't|don't)\b.{5,}\?$",
        r"\bhow (can|could|is|are|long|many)\b.{5,}\?$",
        r"\bwhen will\b.{5,}\?$",
        r"\bwhat (is|are|happened|about|kind)\b.{5,}\?$",
        # Hashtag activism
        r"#abolish\w*",
        r"#(resist|resistance|notmypresident|fuckice)\b",
        r"#\w*(rights|justice|solidarity|noice)\b",
        r"#(immigration|immigrant|undocumented)\b",
        # Vague, unlocated mentions
        r"\bice\s+(is|are)\s+(out|everywhere|around|active)\b",
        r"\b(stay safe|be safe|be careful)\b(?!.{0,20}(at|on|near|avoid|around|in\s+\w{3,}))",
        r"\bice\s+(activity|presence|operations)\s+(in|around|nearby)\b",
        r"\bice\s+activity\b(?!.{0,10}(at|on)\s+\w+)",
        r"\b(in the area|around here|nearby|in this area)\b(?!.{0,20}(at|on|near)\s+\w+)",
        # Second-hand and rumor
        r"\b(i heard|someone said|apparently|supposedly|rumor|word is)\b",
        r"\b(people are saying|they're saying|folks say)\b",
        r"\b(not sure if|don't know if|might be|could be)\b",
    ]
)

NEWS_AGENCY_PATTERNS = _compile(
    [
        r"\b(ice|i\.c\.e\.)\b",
        r"\bcbp\b",
        r"\bborder patrol\b",
        r"\bimmigration\s+(and\s+)?customs\s+enforcement\b",
        r"\bcustoms\s+and\s+border\s+(protection|patrol)\b",
    ]
)

NEWS_ACTION_PATTERNS = _compile(
    [
        r"\braid(s|ed|ing)?\b",
        r"\barrest(s|ed|ing)?\b",
        r"\bdetain(s|ed|ing|ee|ees)?\b",
        r"\bcheckpoint(s)?\b",
        r"\boperation(s)?\b",
        r"\benforcemen(t|ts)?\b",
        r"\bdeport(s|ed|ing|ation|ations)?\b",
        r"\bapprehen(d|ds|ded|ding|sion|sions)\b",
    ]
)

NEWS_EXCLUSION_PATTERNS = _compile(
    [
        r"\bopinion\b",
        r"\beditorial\b",
        r"\bpolicy debate\b",
        r"\bop-ed\b",
        r"\banalysis:\s",
        r"\bcommentary\b",
        r"\bletter to the editor\b",
        r"\bwhat (trump|biden|the administration) (should|must|needs to)\b",
    ]
)


def _collect_matches(patterns: Sequence[Pattern[str]], text: str) -> List[str]:
    matches: List[str] = []
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            matches.append(match.group(0))
    return matches


def _confidence(first_hand: int, sighting: int, score: int) -> str:
    if first_hand >= 2 and sighting >= 2 and score >= 10:
        return "high"
    if first_hand >= 1 and sighting >= 1 and score >= 5:
        return "medium"
    return "low"


def _reason(first_hand: int, sighting: int, commentary: int, strong_signal: bool, score: int) -> str:
    if not first_hand and not sighting:
        return "No sighting indicators found - must include first-hand language"
    if not first_hand:
        return 'Missing first-hand language (e.g., "I saw", "spotted", "right now")'
    if commentary and score < MIN_RELEVANT_SCORE:
        return "Commentary/opinion outweighs sighting indicators"
    if not strong_signal:
        return "Weak signal - needs clear first-hand sighting language"
    if score < MIN_RELEVANT_SCORE:
        return "Score too low - insufficient sighting details"
    return "First-hand sighting report with location/time details"


def classify_social(text: str) -> RelevanceResult:
    """Score a social post as an eyewitness sighting versus commentary."""
    text = text or ""
    for pattern in EXCLUSION_PATTERNS:
        if pattern.search(text):
            return RelevanceResult(
                is_relevant=False,
                score=EXCLUDED_SCORE,
                confidence="high",
                sighting_indicators=[],
                commentary_indicators=[],
                reason="Matches exclusion pattern (news/repost/historical)",
            )

    first_hand = _collect_matches(FIRST_HAND_INDICATORS, text)
    sighting = _collect_matches(SIGHTING_INDICATORS, text)
    commentary = _collect_matches(COMMENTARY_INDICATORS, text)

    score = (
        FIRST_HAND_WEIGHT * len(first_hand)
        + SIGHTING_WEIGHT * len(sighting)
        + COMMENTARY_WEIGHT * len(commentary)
    )
    strong_signal = bool(first_hand) or (len(sighting) >= 3 and not commentary)

    return RelevanceResult(
        is_relevant=strong_signal and score >= MIN_RELEVANT_SCORE,
        score=score,
        confidence=_confidence(len(first_hand), len(sighting), score),
        sighting_indicators=first_hand + sighting,
        commentary_indicators=commentary,
        reason=_reason(len(first_hand), len(sighting), len(commentary), strong_signal, score),
    )


def classify_news(title: str, description: str = "", source_name: str = "") -> NewsRelevanceResult:
    """Decide whether a headline reports enforcement activity."""
    text = f"{title or ''} {description or ''}".lower()
    tier = classify_source(source_name)

    if tier == "blocked":
        return NewsRelevanceResult(
            is_relevant=False,
            has_agency=False,
            has_action=False,
            source_tier=tier,
            reason=f"Blocked source: {source_name}",
        )

    if any(pattern.search(text) for pattern in NEWS_EXCLUSION_PATTERNS):
        return NewsRelevanceResult(
            is_relevant=False,
            has_agency=False,
            has_action=False,
            source_tier=tier,
            reason="Opinion/editorial piece excluded",
        )

    has_agency = any(pattern.search(text) for pattern in NEWS_AGENCY_PATTERNS)
    has_action = any(pattern.search(text) for pattern in NEWS_ACTION_PATTERNS)
    is_relevant = has_agency if tier == "trusted" else has_agency and has_action

    if not has_agency:
        reason = "Missing ICE/CBP agency mention"
    elif not has_action and tier != "trusted":
        reason = "Missing action keyword (raid, arrest, detention, etc.)"
    elif tier == "trusted":
        reason = f"Trusted source ({source_name}) reporting on ICE/CBP"
    else:
        reason = "News article about ICE/CBP enforcement activity"

    return NewsRelevanceResult(
        is_relevant=is_relevant,
        has_agency=has_agency,
        has_action=has_action,
        source_tier=tier,
        reason=reason,
    )


def is_relevant_post(text: str) -> bool:
    return classify_social(text).is_relevant


def is_relevant_news(title: str, description: str = "", source_name: str = "") -> bool:
    return classify_news(title, description, source_name).is_relevant
