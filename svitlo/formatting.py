"""
Text formatting for schedule posts, power notifications and statistics.

Schedules are dicts of "DD.MM.YY" -> [{"shutdown": "HH:MM–HH:MM"}, ...],
the shape the schedule API returns for one queue.
"""

import re
import json
import hashlib
import logging
from datetime import datetime, date, timedelta
from typing import List, Dict, Any, Optional, Tuple, NamedTuple

import pytz

logger = logging.getLogger(__name__)

KYIV_TZ = pytz.timezone('Europe/Kiev')

SCHEDULE_DATE_FORMAT = '%d.%m.%y'
SLOT_SEPARATOR = '–'

_PLACEHOLDER_RE = re.compile(r'\{(\w+)\}')


# --- Time helpers ---
def parse_time_range(time_str: str) -> Tuple[int, int]:
    """
    Парсить рядок 'HH:MM–HH:MM' і повертає (start_minutes, end_minutes) від початку доби.
    """
    try:
        start_str, end_str = time_str.replace('-', SLOT_SEPARATOR).split(SLOT_SEPARATOR)
        start_h, start_m = map(int, start_str.strip().split(':'))
        end_h, end_m = map(int, end_str.strip().split(':'))
        start_min = start_h * 60 + start_m
        end_min = end_h * 60 + end_m
        # Перехід через північ: "22:00–00:00" закінчується о 24:00
        if end_min <= start_min:
            end_min += 24 * 60
        return start_min, end_min
    except (ValueError, AttributeError):
        logger.error(f"Error parsing time range: {time_str}")
        return 0, 0


def format_minutes_to_hh_mm(minutes: int) -> str:
    """Форматує кількість хвилин у HH:MM."""
    h = minutes // 60
    m = minutes % 60
    return f"{h:02d}:{m:02d}"


def get_shutdown_duration_str_by_hours(duration_hours: float) -> str:
    """2.5 -> '2,5 год.'"""
    try:
        if duration_hours <= 0:
            return "0 год."
        if duration_hours % 1 == 0:
            hours_str = str(int(duration_hours))
        else:
            hours_str = f"{duration_hours:g}".replace('.', ',')
        return f"{hours_str} год."
    except Exception:
        return "?"


def format_duration(seconds: Optional[float]) -> str:
    """Тривалість у секундах -> '2 год 15 хв' / '40 хв'."""
    if not seconds or seconds < 60:
        return "менше хвилини" if seconds else "0 хв"
    total_minutes = int(seconds // 60)
    hours, minutes = divmod(total_minutes, 60)
    if hours and minutes:
        return f"{hours} год {minutes} хв"
    if hours:
        return f"{hours} год"
    return f"{minutes} хв"


# --- Templates ---
def format_template(template: str, variables: Dict[str, Any]) -> str:
    """
    Replaces {name} placeholders with values from variables.
    Unknown placeholders are left as they are.
    """
    if not template:
        return ""

    def replace(match):
        name = match.group(1)
        if name in variables and variables[name] is not None:
            return str(variables[name])
        return match.group(0)

    return _PLACEHOLDER_RE.sub(replace, template)


class TemplateDateTime(NamedTuple):
    time_str: str   # HH:MM
    date_str: str   # DD.MM.YYYY


def get_current_datetime_for_template(now: Optional[datetime] = None) -> TemplateDateTime:
    now = now or datetime.now(KYIV_TZ)
    return TemplateDateTime(time_str=now.strftime('%H:%M'), date_str=now.strftime('%d.%m.%Y'))


# --- Schedule structure ---
def parse_schedule_date(date_str: str) -> Optional[date]:
    try:
        return datetime.strptime(date_str, SCHEDULE_DATE_FORMAT).date()
    except (ValueError, TypeError):
        return None


def sort_schedule_dates(schedule: Dict[str, Any]) -> List[str]:
    """Dates in chronological order; unparseable keys go last."""
    return sorted(
        schedule.keys(),
        key=lambda d: (parse_schedule_date(d) is None, parse_schedule_date(d) or date.max, d)
    )


def merge_day_slots(slots: List[Dict[str, Any]]) -> List[Tuple[int, int]]:
    """
    Merges consecutive or overlapping slots of one day into periods.

    04:00–05:00, 05:00–06:00, 08:00–09:00 -> [(240, 360), (480, 540)]
    """
    parsed = []
    for slot in slots or []:
        start_min, end_min = parse_time_range(slot.get('shutdown', ''))
        if start_min == 0 and end_min == 0:
            continue
        parsed.append((start_min, end_min))

    parsed.sort()
    merged: List[Tuple[int, int]] = []
    for start_min, end_min in parsed:
        if merged and start_min <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end_min))
        else:
            merged.append((start_min, end_min))

    if len(merged) < len(slots or []):
        logger.debug(f"Merged {len(slots)} slots into {len(merged)} periods")
    return merged


def merge_consecutive_slots(schedule: Dict[str, List[Dict[str, Any]]]) -> Dict[str, List[Dict[str, str]]]:
    """Whole-schedule version of merge_day_slots, keeping the slot dict shape."""
    if not schedule:
        return {}

    return {
        date_str: [
            {'shutdown': f"{format_minutes_to_hh_mm(s)}{SLOT_SEPARATOR}{format_minutes_to_hh_mm(e)}"}
            for s, e in merge_day_slots(slots)
        ]
        for date_str, slots in schedule.items()
    }


def get_outage_intervals(schedule: Dict[str, List[Dict[str, Any]]], now: datetime) -> List[Tuple[datetime, datetime]]:
    """
    Outage intervals from today on as aware datetimes, merged across
    midnight as well (23:00–00:00 + 00:00–02:00 is one outage).
    """
    intervals = []
    for date_str in sort_schedule_dates(schedule or {}):
        day = parse_schedule_date(date_str)
        if day is None or day < now.date():
            continue
        midnight = KYIV_TZ.localize(datetime.combine(day, datetime.min.time()))
        for start_min, end_min in merge_day_slots(schedule.get(date_str, [])):
            intervals.append((midnight + timedelta(minutes=start_min), midnight + timedelta(minutes=end_min)))

    intervals.sort(key=lambda x: x[0])
    merged: List[Tuple[datetime, datetime]] = []
    for start_dt, end_dt in intervals:
        if merged and start_dt <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end_dt))
        else:
            merged.append((start_dt, end_dt))
    return merged


def get_current_status_message(schedule: Dict[str, Any], now: Optional[datetime] = None) -> Optional[str]:
    """
    Current status line: outage in progress until X, or next outage at Y.
    None when there is nothing ahead.
    """
    if not schedule:
        return None

    now = now or datetime.now(KYIV_TZ)
    try:
        for start_dt, end_dt in get_outage_intervals(schedule, now):
            if start_dt <= now < end_dt:
                return f"⚫ Зараз діє відключення до {end_dt.strftime('%H:%M')}"
            if start_dt > now:
                return f"🟡 Наступне відключення у {start_dt.strftime('%H:%M')}"
        return None
    except Exception as e:
        logger.error(f"Error calculating current status: {e}")
        return None


def get_schedule_hash(schedule: Dict[str, List[Dict[str, Any]]]) -> str:
    """
    Stable hash of the schedule content: dates and slots are normalized and
    serialized canonically, so key order or slot order in the source JSON
    does not produce a "new" schedule.
    """
    normalized = {
        date_str: [
            f"{format_minutes_to_hh_mm(s)}{SLOT_SEPARATOR}{format_minutes_to_hh_mm(e)}"
            for s, e in merge_day_slots(schedule.get(date_str, []))
        ]
        for date_str in sort_schedule_dates(schedule or {})
    }
    if not normalized:
        return "NO_SCHEDULE_FOUND"

    schedule_json_string = json.dumps(normalized, sort_keys=True, ensure_ascii=False, separators=(',', ':'))
    return hashlib.sha256(schedule_json_string.encode('utf-8')).hexdigest()


# --- Schedule post ---
def get_day_label(day: date, today: date) -> str:
    if day == today:
        return "сьогодні"
    if day == today + timedelta(days=1):
        return "завтра"
    return day.strftime('%d.%m')


def format_day_periods(slots: List[Dict[str, Any]], period_format: str) -> List[str]:
    """
    One line per merged outage period, rendered with period_format:
    {s} start, {f} finish, {h} duration.
    """
    lines = []
    for start_min, end_min in merge_day_slots(slots):
        lines.append(format_template(period_format, {
            's': format_minutes_to_hh_mm(start_min),
            'f': format_minutes_to_hh_mm(end_min if end_min == 24 * 60 else end_min % (24 * 60)),
            'h': get_shutdown_duration_str_by_hours((end_min - start_min) / 60.0),
        }))
    return lines


def format_schedule_message(
    schedule: Dict[str, List[Dict[str, Any]]],
    region_name: str,
    queue: str,
    format_settings: Dict[str, Any],
    now: Optional[datetime] = None
) -> str:
    """
    Schedule post for one queue.

    Every day from today on gets the caption template ({dd} day label,
    {d} date, {dm} day.month, {region}, {queue}) followed by its periods.
    """
    now = now or datetime.now(KYIV_TZ)
    today = now.date()
    blocks = []

    for date_str in sort_schedule_dates(schedule or {}):
        day = parse_schedule_date(date_str)
        if day is None or day < today:
            continue

        caption = format_template(format_settings['schedule_caption'], {
            'dd': get_day_label(day, today),
            'd': day.strftime('%d.%m.%Y'),
            'dm': day.strftime('%d.%m'),
            'region': region_name,
            'queue': queue,
        })
        periods = format_day_periods(schedule.get(date_str, []), format_settings['period_format'])
        if periods:
            blocks.append(caption + "\n\n" + "\n".join(periods))
        else:
            blocks.append(caption + "\n\n✅ Відключень не заплановано")

    if not blocks:
        return f"📍 {region_name}, черга {queue}\n\nℹ️ Графік ще не опубліковано"

    message = "\n\n".join(blocks)
    status = get_current_status_message(schedule, now)
    if status:
        message += f"\n\n{status}"
    return message


def has_outages(schedule: Dict[str, List[Dict[str, Any]]], now: Optional[datetime] = None) -> bool:
    now = now or datetime.now(KYIV_TZ)
    return bool(get_outage_intervals(schedule, now))


# --- Power notifications ---
def format_power_message(template: str, now: Optional[datetime] = None, duration_seconds: Optional[float] = None) -> str:
    """power_off_text/power_on_text with {time}, {date} and {duration} filled in."""
    dt = get_current_datetime_for_template(now)
    return format_template(template, {
        'time': dt.time_str,
        'date': dt.date_str,
        'duration': format_duration(duration_seconds) if duration_seconds is not None else "невідомо",
    })


def build_alert_message(event: str, event_time: datetime, minutes_left: int) -> str:
    time_str = event_time.strftime('%H:%M')
    if event == 'off':
        return f"⚠️ Через {minutes_left} хв. очікується відключення ({time_str})"
    return f"💡 Через {minutes_left} хв. очікується включення світла ({time_str})"


# --- Statistics ---
def build_power_stats_message(stats: Dict[str, int], days: int = 7, has_router: bool = True) -> str:
    if not has_router:
        return (
            "📊 **Статистика**\n\n"
            "Статистика збирається моніторингом роутера.\n"
            "Вкажіть IP роутера в ⚙️ Налаштуваннях, щоб бачити фактичні відключення."
        )

    if not stats.get('count'):
        return f"📊 **Статистика за {days} днів**\n\n✅ Відключень не зафіксовано"

    return (
        f"📊 **Статистика за {days} днів**\n\n"
        f"⚡ Відключень: **{stats['count']}**\n"
        f"⏱ Загалом без світла: **{format_duration(stats['total_seconds'])}**\n"
        f"📈 Найдовше: **{format_duration(stats['longest_seconds'])}**"
    )


def build_admin_stats_message(counts: Dict[str, int], paused: bool = False) -> str:
    status = "⏸ на паузі" if paused else "▶️ працює"
    return (
        f"📊 **Статистика бота**\n\n"
        f"👥 Користувачів: **{counts['total']}**\n"
        f"✅ Активних: **{counts['active']}**\n"
        f"📺 З каналом: **{counts['with_channel']}**\n"
        f"📡 З роутером: **{counts['with_router']}**\n"
        f"🆕 Нових за тиждень: **{counts['new_week']}**\n\n"
        f"Стан: {status}"
    )
