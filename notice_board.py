"""
Exam notice board for DCAM Classes

Checks official exam sites and Google News RSS for application windows
that are open right now. Results are cached for NOTICE_BOARD_TTL seconds.
"""
import re
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime
from email.utils import format_datetime
from urllib.parse import urlencode

import requests
from bs4 import BeautifulSoup
from dateutil import parser as date_parser

from utils.cache import CacheManager
from utils.logger import logger

REVALIDATE_SECONDS = 1800
GOOGLE_NEWS_RSS_BASE = 'https://news.google.com/rss/search'
USER_AGENT = 'DCAM-NoticeBoard/1.1'
FETCH_TIMEOUT = 15
FEED_ITEMS_PER_SECTION = 6
AI_MIN_CONFIDENCE = 0.7
CACHE_KEY = 'notice_board:sections'

EXAM_SECTIONS = [
    {'id': 'jee-main', 'examName': 'JEE Main',
     'officialInfoUrl': 'https://jeemain.nta.nic.in/',
     'officialApplyUrl': 'https://examinationservices.nic.in/jeemain',
     'feedQuery': 'JEE Main application form last date apply now'},
    {'id': 'jee-advanced', 'examName': 'JEE Advanced',
     'officialInfoUrl': 'https://jeeadv.ac.in/',
     'officialApplyUrl': 'https://jeeadv.ac.in/',
     'feedQuery': 'JEE Advanced application form registration last date'},
    {'id': 'neet-ug', 'examName': 'NEET UG',
     'officialInfoUrl': 'https://neet.nta.nic.in/',
     'officialApplyUrl': 'https://examinationservices.nic.in/neet',
     'feedQuery': 'NEET UG application form last date apply now'},
    {'id': 'cuet-ug', 'examName': 'CUET UG',
     'officialInfoUrl': 'https://cuet.nta.nic.in/',
     'officialApplyUrl': 'https://examinationservices.nic.in/cuet',
     'feedQuery': 'CUET UG application form last date apply now'},
    {'id': 'viteee', 'examName': 'VITEEE',
     'officialInfoUrl': 'https://viteee.vit.ac.in/',
     'officialApplyUrl': 'https://viteee.vit.ac.in/',
     'feedQuery': 'VITEEE application form last date apply now'},
    {'id': 'bitsat', 'examName': 'BITSAT',
     'officialInfoUrl': 'https://www.bitsadmission.com/',
     'officialApplyUrl': 'https://www.bitsadmission.com/',
     'feedQuery': 'BITSAT application form last date apply now'},
    {'id': 'wbjee', 'examName': 'WBJEE',
     'officialInfoUrl': 'https://wbjeeb.nic.in/',
     'officialApplyUrl': 'https://wbjeeb.nic.in/',
     'feedQuery': 'WBJEE application form last date apply now'},
    {'id': 'comedk-uget', 'examName': 'COMEDK UGET',
     'officialInfoUrl': 'https://www.comedk.org/',
     'officialApplyUrl': 'https://www.comedk.org/',
     'feedQuery': 'COMEDK UGET application form last date apply now'},
    {'id': 'srmjeee', 'examName': 'SRMJEEE',
     'officialInfoUrl': 'https://applications.srmist.edu.in/',
     'officialApplyUrl': 'https://applications.srmist.edu.in/',
     'feedQuery': 'SRMJEEE application form last date apply now'},
    {'id': 'met-manipal', 'examName': 'MET (Manipal)',
     'officialInfoUrl': 'https://manipal.edu/mu/admission.html',
     'officialApplyUrl': 'https://apply.manipal.edu/',
     'feedQuery': 'Manipal MET application form last date apply now'},
    {'id': 'upsc-cse', 'examName': 'UPSC CSE',
     'officialInfoUrl': 'https://www.upsc.gov.in/',
     'officialApplyUrl': 'https://upsconline.nic.in/',
     'feedQuery': 'UPSC CSE application form last date apply now'},
    {'id': 'ssc-cgl', 'examName': 'SSC CGL',
     'officialInfoUrl': 'https://ssc.gov.in/',
     'officialApplyUrl': 'https://ssc.gov.in/',
     'feedQuery': 'SSC CGL application form last date apply now'},
    {'id': 'ibps-po', 'examName': 'IBPS PO',
     'officialInfoUrl': 'https://www.ibps.in/',
     'officialApplyUrl': 'https://www.ibps.in/',
     'feedQuery': 'IBPS PO application form last date apply now'},
    {'id': 'nda', 'examName': 'NDA',
     'officialInfoUrl': 'https://www.upsc.gov.in/',
     'officialApplyUrl': 'https://upsconline.nic.in/',
     'feedQuery': 'NDA application form last date apply now'},
]

OPEN_SIGNALS = [
    'application open', 'applications open', 'registration open', 'registration started',
    'application started', 'apply now', 'online application', 'form filling started',
    'forms available', 'registration live', 'application live', 'extended till',
    'extended to', 'application window open',
]

CLOSED_SIGNALS = [
    'registration closed', 'application closed', 'window closed', 'last date over',
    'deadline passed', 'admit card', 'answer key', 'result declared', 'results declared',
    'counselling', 'counseling', 'exam city intimation', 'seat allotment', 'answer-key',
]

MONTHS = (r'Jan|January|Feb|February|Mar|March|Apr|April|May|Jun|June|Jul|July|Aug|August|'
          r'Sep|Sept|September|Oct|October|Nov|November|Dec|December')
NUMERIC_DATE = r'\d{1,2}[/-]\d{1,2}[/-]\d{2,4}'
DAY_MONTH_YEAR = rf'\d{{1,2}}\s+(?:{MONTHS})\s+\d{{4}}'
MONTH_DAY_YEAR = rf'(?:{MONTHS})\s+\d{{1,2}},\s+\d{{4}}'
ANY_DATE = rf'({NUMERIC_DATE}|{DAY_MONTH_YEAR}|{MONTH_DAY_YEAR})'

FEED_START_KEYWORDS = r'(registration\s+start|registration\s+open|application\s+start|application\s+open|form\s+start|from)\b'
FEED_CLOSE_KEYWORDS = r'(last\s+date|closing\s+date|deadline|form\s+close|till|extended\s+to|apply\s+till)\b'
PAGE_CLOSE_KEYWORDS = r'(last\s+date|closing\s+date|deadline|apply\s+till|registration\s+ends|extended\s+to)\b'
PAGE_START_KEYWORDS = r'(application\s+start|registration\s+start|from|registration\s+open\s+from)\b'

ISO_DATE = re.compile(r'^\d{4}-\d{2}-\d{2}')


# ============================================================================
# TEXT HELPERS
# ============================================================================

def build_feed_url(query):
    params = {'q': query, 'hl': 'en-IN', 'gl': 'IN', 'ceid': 'IN:en'}
    return f"{GOOGLE_NEWS_RSS_BASE}?{urlencode(params)}"


def decode_entities(raw):
    """Feed field text with CDATA markers dropped and character references resolved"""
    text = re.sub(r'<!\[CDATA\[|\]\]>', '', raw or '')
    return re.sub(r'\s+', ' ', BeautifulSoup(text, 'html.parser').get_text()).strip()


def strip_html(raw):
    soup = BeautifulSoup(raw or '', 'html.parser')
    for tag in soup(['script', 'style', 'noscript']):
        tag.decompose()
    return re.sub(r'\s+', ' ', soup.get_text(' ')).strip()


def _tag_value(item_xml, tag):
    # html.parser treats <link> as a void element, so RSS fields are located by pattern
    match = re.search(rf'<{tag}[^>]*>([\s\S]*?)</{tag}>', item_xml, flags=re.I)
    return strip_html(decode_entities(match.group(1) if match else ''))


def _unique(items):
    return list(dict.fromkeys(items))


def detect_dates(text):
    compact = re.sub(r'\s+', ' ', text or '')
    numeric = re.findall(rf'\b{NUMERIC_DATE}\b', compact)
    long_month = [m.group(0) for m in re.finditer(rf'\b{DAY_MONTH_YEAR}\b', compact, flags=re.I)]
    month_first = [m.group(0) for m in re.finditer(rf'\b{MONTH_DAY_YEAR}\b', compact, flags=re.I)]
    return _unique(numeric + long_month + month_first)


def infer_date_by_context(text, keywords):
    """First date within 110 characters after a keyword, not crossing a sentence end"""
    normalized = re.sub(r'\s+', ' ', text or '')
    match = re.search(rf'{keywords}[^.\n]{{0,110}}?{ANY_DATE}', normalized, flags=re.I)
    return match.group(match.lastindex) if match else None


def try_parse_date(value):
    """Parse the date shapes found in notices; numeric dates are day-first"""
    if not value or not value.strip():
        return None
    normalized = re.sub(r'\s+', ' ', value.strip())
    try:
        # dayfirst would read 2026-11-10 as the 11th of October
        if ISO_DATE.match(normalized):
            return date_parser.isoparse(normalized).date()
        return date_parser.parse(normalized, dayfirst=True).date()
    except (ValueError, OverflowError):
        return None


def looks_within_deadline(close_date, today=None):
    """Missing close date: not open. Unparseable close date: assume open."""
    if not close_date:
        return False
    parsed = try_parse_date(close_date)
    if parsed is None:
        return True
    return parsed >= (today or date.today())


def is_likely_open_application(text):
    normalized = (text or '').lower()
    has_open = any(signal in normalized for signal in OPEN_SIGNALS)
    has_closed = any(signal in normalized for signal in CLOSED_SIGNALS)
    return has_open and not has_closed


def parse_rss(xml, max_items, today=None):
    """Feed items that read as open applications with a future close date"""
    items = []
    for match in re.finditer(r'<item>([\s\S]*?)</item>', xml or '', flags=re.I):
        if len(items) >= max_items:
            break
        item_xml = match.group(1)
        title = _tag_value(item_xml, 'title')
        link = _tag_value(item_xml, 'link')
        description = _tag_value(item_xml, 'description')
        combined = f"{title}. {description}"
        close_date = infer_date_by_context(combined, FEED_CLOSE_KEYWORDS)
        if not (title and link and is_likely_open_application(combined)
                and close_date and looks_within_deadline(close_date, today)):
            continue
        items.append({
            'title': title,
            'link': link,
            'source': _tag_value(item_xml, 'source'),
            'publishedAt': _tag_value(item_xml, 'pubDate'),
            'summary': description or None,
            'detectedDates': detect_dates(combined),
            'formStartDate': infer_date_by_context(combined, FEED_START_KEYWORDS),
            'formCloseDate': close_date,
        })
    return items


def verify_from_official_page(page_html, today=None):
    clean = strip_html(page_html)
    is_open = is_likely_open_application(clean)
    last_date = infer_date_by_context(clean, PAGE_CLOSE_KEYWORDS)
    start_date = infer_date_by_context(clean, PAGE_START_KEYWORDS)
    evidence = []
    if is_open:
        evidence.append('Official page indicates application/registration is open.')
    if last_date:
        evidence.append(f"Official page deadline: {last_date}")
    return {
        'isOpen': bool(is_open and last_date and looks_within_deadline(last_date, today)),
        'lastDate': last_date,
        'startDate': start_date,
        'evidence': evidence,
        'textSample': clean[:4500],
    }


def build_official_notice(section, verification):
    return {
        'title': f"{section['examName']} applications are open",
        'link': section['officialApplyUrl'],
        'source': 'Official Website',
        'publishedAt': format_datetime(datetime.utcnow()),
        'summary': ' '.join(verification['evidence']),
        'detectedDates': [d for d in (verification['startDate'], verification['lastDate']) if d],
        'formStartDate': verification['startDate'],
        'formCloseDate': verification['lastDate'],
    }


def dedupe_by_link(items):
    seen = set()
    result = []
    for item in items:
        if item['link'] in seen:
            continue
        seen.add(item['link'])
        result.append(item)
    return result


def _close_sort_key(item):
    parsed = try_parse_date(item.get('formCloseDate') or '')
    # unknown close dates sort last
    return parsed or date.max


# ============================================================================
# FETCHING
# ============================================================================

def fetch_text(url, session=None):
    http = session or requests
    response = http.get(url, timeout=FETCH_TIMEOUT, headers={
        'User-Agent': USER_AGENT,
        'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
    })
    response.raise_for_status()
    return response.text


def build_section(section, fetch=fetch_text, validator=None, today=None):
    """Updates for one exam; an empty list whenever anything fails"""
    try:
        info_html = fetch(section['officialInfoUrl'])
        apply_html = fetch(section['officialApplyUrl'])
        feed_xml = fetch(build_feed_url(section['feedQuery']))

        info = verify_from_official_page(info_html, today)
        applied = verify_from_official_page(apply_html, today)
        official = applied if applied['isOpen'] else info
        if not official['isOpen']:
            return {**section, 'updates': []}

        candidates = dedupe_by_link(
            [build_official_notice(section, official)] + parse_rss(feed_xml, FEED_ITEMS_PER_SECTION, today)
        )
        candidates.sort(key=_close_sort_key)

        decision = None
        if validator is not None:
            try:
                decision = validator(
                    exam_name=section['examName'],
                    verification=official,
                    official_info_url=section['officialInfoUrl'],
                    official_apply_url=section['officialApplyUrl'],
                    feed_candidates=candidates,
                )
            except Exception as e:
                logger.warning("notice_ai_validation_failed", section=section['id'], error=str(e))
                decision = None

        if decision:
            last_date = decision.get('normalizedLastDate') or official['lastDate']
            if (not decision.get('include') or float(decision.get('confidence') or 0) < AI_MIN_CONFIDENCE
                    or not looks_within_deadline(last_date, today)):
                return {**section, 'updates': []}
            first = candidates[0]
            candidates[0] = {
                **first,
                'formCloseDate': decision.get('normalizedLastDate') or first.get('formCloseDate') or official['lastDate'],
                'summary': f"{first.get('summary') or ''} {decision.get('reasoning') or ''}".strip(),
            }
        return {**section, 'updates': candidates}
    except Exception as e:
        logger.warning("notice_section_failed", section=section['id'], error=str(e))
        return {**section, 'updates': []}


def fetch_notice_board(validator=None, fetch=fetch_text, ttl=REVALIDATE_SECONDS, use_cache=True):
    """Sections with at least one open-application update, cached for `ttl` seconds"""
    if use_cache:
        cached = CacheManager.get(CACHE_KEY)
        if cached is not None:
            return cached
    with ThreadPoolExecutor(max_workers=6) as executor:
        results = list(executor.map(lambda s: build_section(s, fetch, validator), EXAM_SECTIONS))
    board = {
        'automated': True,
        'fetchedAt': datetime.utcnow().isoformat() + 'Z',
        'revalidateSeconds': ttl,
        'sections': [section for section in results if section['updates']],
    }
    if use_cache:
        CacheManager.set(CACHE_KEY, board, ttl)
    logger.info("notice_board_refreshed", sections=len(board['sections']))
    return board


