"""
24-hour clock-face picture of one day's outage schedule.
"""

import io
import math
import logging
from datetime import datetime
from typing import List, Dict, Any, Optional
from PIL import Image, ImageDraw, ImageFont

from svitlo.formatting import merge_day_slots, sort_schedule_dates, parse_schedule_date

logger = logging.getLogger(__name__)

SCALE = 2  # 600x600
BASE_SIZE = 300
COLOR_POWER_ON = "#FFD700"
COLOR_POWER_OFF = "#000000"
MINUTES_PER_DAY = 24 * 60
DEGREES_PER_MINUTE = 360.0 / MINUTES_PER_DAY


def _load_font(font_path: str, font_size: int):
    try:
        return ImageFont.truetype(font_path, font_size)
    except (IOError, OSError):
        logger.warning(f"Font not found at '{font_path}', using default")
        return ImageFont.load_default(size=font_size)


def pick_image_day(schedule: Dict[str, List[Dict[str, Any]]], current_time: Optional[datetime] = None) -> Optional[str]:
    """
    Day to draw: today if the schedule has it, otherwise the first day
    from today on that has outages.
    """
    if not schedule:
        return None

    today = current_time.date() if current_time else None
    for date_str in sort_schedule_dates(schedule):
        day = parse_schedule_date(date_str)
        if day is None or (today and day < today):
            continue
        if today and day == today:
            return date_str
        if schedule.get(date_str):
            return date_str
    return None


def generate_24h_schedule_image(
    date_str: str,
    slots: List[Dict[str, Any]],
    font_path: str,
    current_time: Optional[datetime] = None
) -> Optional[bytes]:
    """
    PNG clock face: 24 hour sectors, yellow = power, black = outage,
    white hour dividers, date in the centre. When current_time falls on
    date_str the dial is rotated so the current hour is at the top and a
    marker points at it.

    Returns None when there is nothing to draw.
    """
    periods = merge_day_slots(slots)
    if not periods:
        return None

    try:
        size = BASE_SIZE * SCALE
        padding = 30 * SCALE
        center = (size // 2, size // 2)
        radius = (size // 2) - padding
        bbox = [padding, padding, size - padding, size - padding]
        image = Image.new('RGB', (size, size), (255, 255, 255))
        draw = ImageDraw.Draw(image)
        font = _load_font(font_path, 18)

        rotation_offset = 0.0
        is_today = bool(current_time and current_time.strftime('%d.%m.%y') == date_str)
        if is_today:
            current_minutes = current_time.hour * 60 + current_time.minute
            rotation_offset = -current_minutes * DEGREES_PER_MINUTE

        draw.ellipse(bbox, fill=COLOR_POWER_ON, outline=None)

        # 00:00 is at 270 degrees (top) before rotation
        for start_min, end_min in periods:
            end_min = min(end_min, MINUTES_PER_DAY)
            start_angle = 270 + start_min * DEGREES_PER_MINUTE + rotation_offset
            end_angle = 270 + end_min * DEGREES_PER_MINUTE + rotation_offset
            draw.pieslice(bbox, start_angle, end_angle, fill=COLOR_POWER_OFF, outline=None)

        degrees_per_hour = 360.0 / 24.0
        for hour in range(24):
            angle_rad = math.radians(270 + hour * degrees_per_hour + rotation_offset)
            x_pos = center[0] + radius * math.cos(angle_rad)
            y_pos = center[1] + radius * math.sin(angle_rad)
            draw.line([center, (x_pos, y_pos)], fill="#FFFFFF", width=4)

        inner_radius = int(radius * 0.50)
        draw.ellipse([
            center[0] - inner_radius,
            center[1] - inner_radius,
            center[0] + inner_radius,
            center[1] + inner_radius
        ], fill='#FFFFFF', outline=None)

        draw.text(center, date_str, fill='#000000', font=font, anchor="mm")

        label_radius = radius + (padding * 0.35)
        for hour in range(24):
            angle_rad = math.radians(270 + hour * degrees_per_hour + rotation_offset)
            x_pos = center[0] + label_radius * math.cos(angle_rad)
            y_pos = center[1] + label_radius * math.sin(angle_rad)
            draw.text((x_pos, y_pos), f"{hour:02d}", fill="black", font=font, anchor="mm")

        if is_today:
            # Current-time marker: triangle at the top of the inner circle
            angle_rad = math.radians(270)
            apex_distance = inner_radius - 2 * SCALE
            base_distance = apex_distance - 8 * SCALE
            half_base = 3 * SCALE
            apex = (center[0] + apex_distance * math.cos(angle_rad), center[1] + apex_distance * math.sin(angle_rad))
            base_x = center[0] + base_distance * math.cos(angle_rad)
            base_y = center[1] + base_distance * math.sin(angle_rad)
            perp_angle = angle_rad + math.radians(90)
            draw.polygon([
                apex,
                (base_x + half_base * math.cos(perp_angle), base_y + half_base * math.sin(perp_angle)),
                (base_x - half_base * math.cos(perp_angle), base_y - half_base * math.sin(perp_angle)),
            ], fill="black")

        buf = io.BytesIO()
        image.save(buf, format='PNG')
        return buf.getvalue()
    except Exception as e:
        logger.error(f"Failed to generate 24h diagram for {date_str}: {e}", exc_info=True)
        return None


def generate_schedule_image(
    schedule: Dict[str, List[Dict[str, Any]]],
    font_path: str,
    current_time: Optional[datetime] = None
) -> Optional[bytes]:
    """Picture for a whole queue schedule (see pick_image_day)."""
    date_str = pick_image_day(schedule, current_time)
    if date_str is None:
        return None
    return generate_24h_schedule_image(date_str, schedule.get(date_str, []), font_path, current_time)
