"""
Postback parameter normalization.

Affiliate networks send the same value under many names (sub4 / sub_id4 /
sub_id_4, leadId / lead_id, price / payout ...) and sometimes forget to
substitute their URL templates, so `leadId={leadId}` arrives verbatim.
normalize_params() turns that bag into one NormalizedPostback with a fixed
field set. Unsubstituted or empty values are treated as absent.

Pure: no DB or network access. `today` is injectable for tests.
"""
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, Optional, Tuple

from leadtrack.config import PLACEHOLDER_TOKENS
from leadtrack.database import LOCAL_TZ, local_today

logger = logging.getLogger('postback.normalizer')

# Epoch values above this are milliseconds (1e11 s is the year 5138).
_EPOCH_MS_THRESHOLD = 100_000_000_000
# Epoch values that land before this day are not timestamps.
_EPOCH_MIN_DAY = date(2000, 1, 1)

CAMPAIGN_DIRECT = ('campaign', 'campaign_name', 'campanha')
ADSET_DIRECT = ('adset', 'adset_name', 'conjunto')
AD_DIRECT = ('ad', 'ad_name', 'anuncio')

LEAD_ID_KEYS = ('leadId', 'lead_id')
OFFER_ID_KEYS = ('offer_id', 'offerId')
ORDER_ID_KEYS = ('order_id', 'orderId', 'orderid', 'order', 'id')
PAYOUT_KEYS = ('price', 'payout', 'amount', 'value', 'revenue')
DATE_KEYS = ('date', 'timestamp', 'time')


@dataclass
class NormalizedPostback:
    """Canonical view of one inbound postback."""
    notification_type: str
    attribution_date: date
    sub1: Optional[str] = None
    sub2: Optional[str] = None
    sub3: Optional[str] = None
    sub4: Optional[str] = None
    sub5: Optional[str] = None
    sub6: Optional[str] = None
    sub7: Optional[str] = None
    sub8: Optional[str] = None
    campaign: Optional[str] = None
    adset: Optional[str] = None
    ad: Optional[str] = None
    lead_id: Optional[str] = None
    offer_id: Optional[str] = None
    status: Optional[str] = None
    payout: Optional[Decimal] = None
    placement: Optional[str] = None
    pixel: Optional[str] = None
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    # Counter metadata only; never stored on the LeadRecord.
    campaign_id: Optional[str] = None
    adset_id: Optional[str] = None
    ad_id: Optional[str] = None

    @property
    def hierarchy(self) -> Tuple[Optional[str], ...]:
        """The (sub1, campaign, adset, ad) tuple used for hierarchy matching."""
        return (self.sub1, self.campaign, self.adset, self.ad)

    def record_fields(self) -> Dict:
        """Column values for a new LeadRecord (date/created_at/category excluded)."""
        fields = {
            'lead_id': self.lead_id,
            'offer_id': self.offer_id,
            'campaign': self.campaign,
            'adset': self.adset,
            'ad': self.ad,
            'status': self.status,
            'payout': float(self.payout) if self.payout is not None else None,
            'notification_type': self.notification_type,
            'placement': self.placement,
            'pixel': self.pixel,
            'utm_source': self.utm_source,
            'utm_medium': self.utm_medium,
        }
        for n in range(1, 9):
            fields[f'sub_id{n}'] = getattr(self, f'sub{n}')
        return fields


def is_valid_value(value) -> bool:
    """False for empty values and unsubstituted template placeholders."""
    if value is None:
        return False
    text = str(value).strip()
    if not text:
        return False
    if text in PLACEHOLDER_TOKENS:
        return False
    if '{' in text and '}' in text:
        return False
    return True


def _first_valid(params: Dict[str, str], keys: Iterable[str]) -> Optional[str]:
    for key in keys:
        value = params.get(key)
        if is_valid_value(value):
            return str(value).strip()
    return None


def _first_valid_casefold(params: Dict[str, str], names: Iterable[str]) -> Optional[str]:
    """Like _first_valid but matches keys case-insensitively (leadID, OfferId ...)."""
    wanted = {n.lower() for n in names}
    for key in sorted(params):
        if key.lower() in wanted and is_valid_value(params[key]):
            return str(params[key]).strip()
    return None


def _sub(params: Dict[str, str], n: int) -> Optional[str]:
    keys = [f'sub{n}', f'sub_id{n}', f'sub_id_{n}']
    if n == 1:
        keys.append('sub_id')
    return _first_valid(params, keys)


def parse_payout(raw) -> Optional[Decimal]:
    """Decimal amount, or None when the value is missing or not a finite number."""
    if not is_valid_value(raw):
        return None
    text = str(raw).strip()
    if ',' in text and '.' not in text:
        text = text.replace(',', '.')
    try:
        amount = Decimal(text)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    # Stored as a float column; 1e400 is a finite Decimal but an infinite float.
    if not math.isfinite(float(amount)):
        return None
    return amount


def _epoch_date(ts: int, today: date) -> date:
    if ts > _EPOCH_MS_THRESHOLD:
        ts = ts / 1000
    day = datetime.fromtimestamp(ts, LOCAL_TZ).date()
    if not _EPOCH_MIN_DAY <= day <= today.replace(year=today.year + 1, day=min(today.day, 28)):
        raise ValueError(f'epoch {ts} outside the plausible window')
    return day


def parse_attribution_date(raw, today: date) -> date:
    """
    Calendar day (in LOCAL_TIMEZONE) a postback is credited to.

    Accepts compact YYYYMMDD, epoch seconds/milliseconds and ISO-8601 dates
    or datetimes. Naive datetimes are already local. Anything unparsable,
    including out-of-range fields like hour 25 or an epoch outside
    2000..today+1y, falls back to `today`.
    """
    if not is_valid_value(raw):
        return today
    text = str(raw).strip()
    try:
        if text.isdigit() and len(text) == 8:
            return datetime.strptime(text, '%Y%m%d').date()
        if text.isdigit():
            return _epoch_date(int(text), today)
        parsed = datetime.fromisoformat(text.replace('Z', '+00:00'))
    except (ValueError, OverflowError, OSError):
        logger.info("Unparsable postback date %r, attributing to %s", text, today)
        return today
    if parsed.tzinfo is None:
        return parsed.date()
    return parsed.astimezone(LOCAL_TZ).date()


def normalize_params(params: Dict[str, str], notification_type: str,
                     today: Optional[date] = None) -> NormalizedPostback:
    """Build a NormalizedPostback from a raw query-parameter mapping."""
    if today is None:
        today = local_today()

    subs = {n: _sub(params, n) for n in range(1, 9)}

    campaign = (_first_valid(params, ['utm_campaign']) or subs[6] or subs[3]
                or _first_valid(params, CAMPAIGN_DIRECT))
    adset = (_first_valid(params, ['utm_content']) or subs[5]
             or _first_valid(params, ADSET_DIRECT))
    ad = (_first_valid(params, ['utm_term']) or subs[4]
          or _first_valid(params, AD_DIRECT))

    lead_id = (_first_valid(params, LEAD_ID_KEYS)
               or _first_valid_casefold(params, ['leadid', 'lead_id']))
    offer_id = (_first_valid(params, OFFER_ID_KEYS)
                or _first_valid_casefold(params, ['offerid', 'offer_id'])
                or _first_valid(params, ORDER_ID_KEYS))

    raw_payout = next((params[k] for k in PAYOUT_KEYS if is_valid_value(params.get(k))), None)
    raw_date = next((params[k] for k in DATE_KEYS if is_valid_value(params.get(k))), None)

    return NormalizedPostback(
        notification_type=notification_type,
        attribution_date=parse_attribution_date(raw_date, today),
        sub1=subs[1], sub2=subs[2], sub3=subs[3], sub4=subs[4],
        sub5=subs[5], sub6=subs[6], sub7=subs[7], sub8=subs[8],
        campaign=campaign,
        adset=adset,
        ad=ad,
        lead_id=lead_id,
        offer_id=offer_id,
        status=_first_valid(params, ['status', 'state']),
        payout=parse_payout(raw_payout),
        placement=_first_valid(params, ['placement']) or subs[7],
        pixel=_first_valid(params, ['pixel']),
        utm_source=_first_valid(params, ['utm_source']),
        utm_medium=_first_valid(params, ['utm_medium']),
        campaign_id=_first_valid(params, ['campaign_id']) or subs[3],
        adset_id=_first_valid(params, ['adset_id']) or subs[3],
        ad_id=_first_valid(params, ['ad_id']) or subs[2],
    )
