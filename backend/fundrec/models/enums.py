"""Enumerations shared by models, services and schemas."""

from enum import Enum


class EventType(str, Enum):
    IMPRESSION = "IMPRESSION"
    VIEW = "VIEW"
    CLICK = "CLICK"
    SAVE = "SAVE"
    UNSAVE = "UNSAVE"
    DISMISS = "DISMISS"
    HIDE = "HIDE"
    APPLIED = "APPLIED"
    PLANNING = "PLANNING"
    NOT_ELIGIBLE = "NOT_ELIGIBLE"


class ColdStartTier(str, Enum):
    FULL_COLD = "FULL_COLD"
    PARTIAL_COLD = "PARTIAL_COLD"
    WARM = "WARM"


class ProgramStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"
    UPCOMING = "UPCOMING"
    ARCHIVED = "ARCHIVED"


class ExplorationStrategy(str, Enum):
    RANDOM = "random"
    EPSILON_GREEDY = "epsilon_greedy"
    UCB = "ucb"
