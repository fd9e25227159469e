import logging
import random
import string
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

logger = logging.getLogger(__name__)

MIN_EXTRA_TURNS = 5
RANDOM_EXTRA_TURNS = 3  # 0, 1 or 2 on top of the minimum
WIN_CODE_LENGTH = 8
WIN_CODE_ALPHABET = string.ascii_uppercase + string.digits
DEFAULT_WIN_PROBABILITY = 5

DATE_FORMAT = '%Y-%m-%d'
TIME_FORMAT = '%H:%M:%S'


class SpinEngineError(Exception):
    """Base class for spin engine failures"""


class ConfigurationError(SpinEngineError):
    """The game configuration cannot be used to evaluate a spin"""


# ==============================================================================
# PRIZE CONFIGURATION
# ==============================================================================

@dataclass(frozen=True)
class PrizeSegment:
    label: str
    is_winning: bool
    value: int
    segment_index: int

    def to_document(self):
        return {'label': self.label, 'is_winning': self.is_winning, 'value': self.value}


@dataclass(frozen=True)
class GameConfiguration:
    segments: tuple
    max_plays_per_user_per_day: int
    max_global_wins_per_day: int
    win_probability_percent: float
    is_active: bool = True
    wheel_name: str = 'Fortune Wheel'

    @property
    def segment_count(self):
        return len(self.segments)

    @property
    def winning_segments(self):
        return [s for s in self.segments if s.is_winning]

    @property
    def losing_segments(self):
        return [s for s in self.segments if not s.is_winning]

    def validate(self):
        """Raise ConfigurationError unless the configuration can drive a spin"""
        if not self.segments:
            raise ConfigurationError("Configuration has no prize segments")
        for expected, segment in enumerate(self.segments):
            if segment.segment_index != expected:
                raise ConfigurationError(
                    f"Segment '{segment.label}' has index {segment.segment_index}, expected {expected}"
                )
        if self.max_plays_per_user_per_day < 0:
            raise ConfigurationError("max_plays_per_user_per_day must be >= 0")
        if self.max_global_wins_per_day < 0:
            raise ConfigurationError("max_global_wins_per_day must be >= 0")
        if not 0 <= self.win_probability_percent <= 100:
            raise ConfigurationError("win_probability_percent must be between 0 and 100")
        return self

    @classmethod
    def from_document(cls, data):
        """
        Build a validated configuration from the stored JSON document.

        Optional keys (active, win_probability_percent, wheel_name) get their
        documented defaults here; the limits and the prize list are required.
        """
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration document must be a JSON object")

        prizes = data.get('prizes')
        if not isinstance(prizes, list) or not prizes:
            raise ConfigurationError("Configuration must define a non-empty 'prizes' list")

        segments = []
        for index, prize in enumerate(prizes):
            if not isinstance(prize, dict):
                raise ConfigurationError(f"Prize #{index} is not an object")
            label = prize.get('label')
            if not isinstance(label, str) or not label.strip():
                raise ConfigurationError(f"Prize #{index} needs a non-empty label")
            segments.append(PrizeSegment(
                label=label.strip(),
                is_winning=_as_bool(prize.get('is_winning', False), f"prizes[{index}].is_winning"),
                value=_as_int(prize.get('value', 0), f"prizes[{index}].value"),
                segment_index=index,
            ))

        for key in ('max_plays_per_user_per_day', 'max_global_wins_per_day'):
            if key not in data:
                raise ConfigurationError(f"Missing required field: {key}")

        try:
            probability = float(data.get('win_probability_percent', DEFAULT_WIN_PROBABILITY))
        except (TypeError, ValueError):
            raise ConfigurationError("win_probability_percent must be a number")

        config = cls(
            segments=tuple(segments),
            max_plays_per_user_per_day=_as_int(data['max_plays_per_user_per_day'], 'max_plays_per_user_per_day'),
            max_global_wins_per_day=_as_int(data['max_global_wins_per_day'], 'max_global_wins_per_day'),
            win_probability_percent=probability,
            is_active=_as_bool(data.get('active', True), 'active'),
            wheel_name=str(data.get('wheel_name') or 'Fortune Wheel'),
        )
        return config.validate()

    def to_document(self):
        return {
            'wheel_name': self.wheel_name,
            'max_plays_per_user_per_day': self.max_plays_per_user_per_day,
            'max_global_wins_per_day': self.max_global_wins_per_day,
            'win_probability_percent': self.win_probability_percent,
            'active': self.is_active,
            'prizes': [s.to_document() for s in self.segments],
        }


def _as_int(value, name):
    if isinstance(value, bool):
        raise ConfigurationError(f"{name} must be an integer")
    if isinstance(value, float) and not value.is_integer():
        raise ConfigurationError(f"{name} must be a whole number, got {value}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be an integer")


def _as_bool(value, name):
    if not isinstance(value, bool):
        raise ConfigurationError(f"{name} must be true or false, got {value!r}")
    return value


# ==============================================================================
# PLAY LOG
# ==============================================================================

@dataclass
class PlayLogEntry:
    user_id: str
    date: str
    time: str
    result_label: str
    is_win: bool
    claimed: Optional[bool] = None
    win_code: Optional[str] = None

    def to_document(self):
        """Serialize for plays.json, omitting optional fields that are absent"""
        doc = {
            'user': self.user_id,
            'date': self.date,
            'time': self.time,
            'result': self.result_label,
            'is_win': self.is_win,
        }
        if self.claimed is not None:
            doc['claimed'] = self.claimed
        if self.win_code is not None:
            doc['win_code'] = self.win_code
        return doc

    @classmethod
    def from_document(cls, data):
        return cls(
            user_id=data.get('user', ''),
            date=data.get('date', ''),
            time=data.get('time', ''),
            result_label=data.get('result', ''),
            is_win=bool(data.get('is_win', False)),
            claimed=data.get('claimed'),
            win_code=data.get('win_code'),
        )


@dataclass(frozen=True)
class DailyCounts:
    user_plays_today: int
    global_wins_today: int
    can_play: bool
    can_win: bool


def evaluate_daily_limits(user_id, today, log, config):
    """
    Count today's plays for user_id and today's wins across all users.

    `today` is a date or a YYYY-MM-DD string; `log` is an iterable of
    PlayLogEntry or play-log documents. Nothing is cached between calls.
    """
    day = today.strftime(DATE_FORMAT) if hasattr(today, 'strftime') else str(today)

    user_plays = 0
    global_wins = 0
    for entry in log:
        if isinstance(entry, dict):
            entry = PlayLogEntry.from_document(entry)
        if entry.date != day:
            continue
        if entry.user_id == user_id:
            user_plays += 1
        if entry.is_win:
            global_wins += 1

    return DailyCounts(
        user_plays_today=user_plays,
        global_wins_today=global_wins,
        can_play=user_plays < config.max_plays_per_user_per_day,
        can_win=global_wins < config.max_global_wins_per_day,
    )


# ==============================================================================
# OUTCOME SELECTION
# ==============================================================================

@dataclass(frozen=True)
class ChosenPrize:
    segment_index: int
    segment: PrizeSegment


def select_outcome(config, can_win, rng):
    """
    Pick the prize for one spin.

    Win probability and the global win cap are independent gates. Within the
    winning or losing pool every segment is equally likely; prize value plays
    no part in the draw.
    """
    if not config.segments:
        raise ConfigurationError("Cannot select an outcome without prize segments")

    winning = config.winning_segments
    losing = config.losing_segments

    if can_win and winning:
        if rng.random() < config.win_probability_percent / 100:
            segment = rng.choice(winning)
            return ChosenPrize(segment_index=segment.segment_index, segment=segment)

    segment = rng.choice(losing) if losing else rng.choice(list(config.segments))
    return ChosenPrize(segment_index=segment.segment_index, segment=segment)


# ==============================================================================
# ROTATION PLANNING
# ==============================================================================

def rotation_target(segment_index, segment_count):
    """Resting angle (mod 360) that centres the segment under the pointer"""
    slice_angle = 360 / segment_count
    target_angle = segment_index * slice_angle + slice_angle / 2
    return (360 - target_angle) % 360


def plan_rotation(segment_index, segment_count, current_rotation, rng):
    """
    Return the next absolute wheel rotation in degrees.

    The pointer sits at 0 degrees and segment 0 starts there going clockwise.
    The result is always ahead of current_rotation by at least
    MIN_EXTRA_TURNS full turns and leaves the pointer on the centre of the
    chosen segment.
    """
    if segment_count <= 0:
        raise ConfigurationError(f"Segment count must be positive, got {segment_count}")
    if not 0 <= segment_index < segment_count:
        raise ValueError(f"Segment index {segment_index} outside 0..{segment_count - 1}")
    if current_rotation < 0:
        raise ValueError("Current rotation cannot be negative")

    base_target = rotation_target(segment_index, segment_count)
    distance = (base_target - current_rotation % 360 + 360) % 360
    extra_turns = MIN_EXTRA_TURNS + rng.randrange(RANDOM_EXTRA_TURNS)

    return current_rotation + distance + extra_turns * 360


# ==============================================================================
# PLAY RECORD
# ==============================================================================

def generate_win_code(rng, length=WIN_CODE_LENGTH):
    return ''.join(rng.choice(WIN_CODE_ALPHABET) for _ in range(length))


def build_play_record(user_id, chosen, now, rng):
    """Build the play-log entry for a finished draw; `now` comes from the caller's clock"""
    is_win = chosen.segment.is_winning
    return PlayLogEntry(
        user_id=user_id,
        date=now.strftime(DATE_FORMAT),
        time=now.strftime(TIME_FORMAT),
        result_label=chosen.segment.label,
        is_win=is_win,
        claimed=False if is_win else None,
        win_code=generate_win_code(rng) if is_win else None,
    )


# ==============================================================================
# SPIN ORCHESTRATION
# ==============================================================================

REJECT_DAILY_LIMIT = 'daily_limit_reached'


@dataclass
class SpinResult:
    accepted: bool
    counts: DailyCounts
    chosen: Optional[ChosenPrize] = None
    record: Optional[PlayLogEntry] = None
    rotation: Optional[float] = None
    reason: Optional[str] = None


def run_spin(user_id, config, log, current_rotation=0, now=None, rng=None):
    """
    Evaluate one spin: limits, outcome, play record and rotation target.

    Returns a SpinResult; a user with no plays left gets accepted=False and
    no random draw is made. The caller persists result.record.
    """
    config.validate()
    now = now if now is not None else datetime.now()
    rng = rng if rng is not None else random.SystemRandom()

    counts = evaluate_daily_limits(user_id, now.date(), log, config)
    if not counts.can_play:
        logger.info(f"⛔ Spin rejected for '{user_id}': {counts.user_plays_today} plays today")
        return SpinResult(accepted=False, counts=counts, reason=REJECT_DAILY_LIMIT)

    chosen = select_outcome(config, counts.can_win, rng)
    record = build_play_record(user_id, chosen, now, rng)
    rotation = plan_rotation(chosen.segment_index, config.segment_count, current_rotation, rng)

    logger.info(
        f"🎯 '{user_id}' landed on #{chosen.segment_index} '{chosen.segment.label}' "
        f"(win={record.is_win}, can_win={counts.can_win}, rotation={rotation:.1f})"
    )
    return SpinResult(accepted=True, counts=counts, chosen=chosen, record=record, rotation=rotation)
