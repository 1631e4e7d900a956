"""Helpers for driving the KataGo JSON analysis engine through a session."""

import logging
from collections.abc import Mapping
from collections.abc import Sequence
from dataclasses import dataclass
from dataclasses import field

from enginemux.api import open_engine
from enginemux.errors import DecodeError
from enginemux.session import UNSET
from enginemux.session import EngineSession
from enginemux.session import Unset

logger = logging.getLogger(__name__)

DEFAULT_KATAGO_BINARY: str = "katago"
DEFAULT_RULES: str = "tromp-taylor"
DEFAULT_KOMI: float = 7.5
DEFAULT_BOARD_SIZE: int = 19

Stone = tuple[str, str]


@dataclass(frozen=True)
class AnalysisRequest:
    """One KataGo analysis query.

    ``moves`` and ``initial_stones`` hold ``(color, vertex)`` pairs such as
    ``("B", "Q16")``.
    """

    id: str
    moves: Sequence[Stone] = ()
    initial_stones: Sequence[Stone] = ()
    rules: str = DEFAULT_RULES
    komi: float = DEFAULT_KOMI
    board_x_size: int = DEFAULT_BOARD_SIZE
    board_y_size: int = DEFAULT_BOARD_SIZE
    analyze_turns: Sequence[int] = ()
    max_visits: int | None = None
    override_settings: Mapping[str, object] = field(default_factory=dict)

    def to_wire(self) -> dict[str, object]:
        """Return the query as KataGo's camelCase JSON object.

        :returns: Wire mapping.
        """
        wire: dict[str, object] = {
            "id": self.id,
            "moves": [[color, vertex] for color, vertex in self.moves],
            "rules": self.rules,
            "komi": self.komi,
            "boardXSize": self.board_x_size,
            "boardYSize": self.board_y_size,
        }
        if len(self.initial_stones) > 0:
            wire["initialStones"] = [[color, vertex] for color, vertex in self.initial_stones]
        if len(self.analyze_turns) > 0:
            wire["analyzeTurns"] = list(self.analyze_turns)
        if self.max_visits is not None:
            wire["maxVisits"] = self.max_visits
        if len(self.override_settings) > 0:
            wire["overrideSettings"] = dict(self.override_settings)
        return wire


@dataclass(frozen=True)
class MoveInfo:
    """Statistics KataGo reports for one candidate move."""

    move: str
    winrate: float
    visits: int = 0
    score_lead: float | None = None
    order: int | None = None

    @classmethod
    def from_wire(cls, payload: Mapping[str, object]) -> "MoveInfo":
        """Build from one ``moveInfos`` entry.

        :param payload: Wire mapping.
        :returns: Parsed move info.
        :raises DecodeError: If ``move`` or ``winrate`` is missing or mistyped.
        """
        move: object = payload.get("move")
        winrate: object = payload.get("winrate")
        if isinstance(move, str) is False or isinstance(winrate, (int, float)) is False:
            raise DecodeError("moveInfos entry needs a string 'move' and numeric 'winrate'", repr(dict(payload)))
        visits: object = payload.get("visits", 0)
        score_lead: object = payload.get("scoreLead")
        order: object = payload.get("order")
        return cls(
            move=move,
            winrate=float(winrate),
            visits=visits if isinstance(visits, int) else 0,
            score_lead=float(score_lead) if isinstance(score_lead, (int, float)) else None,
            order=order if isinstance(order, int) else None,
        )


@dataclass(frozen=True)
class AnalysisResponse:
    """Parsed KataGo analysis reply; ``raw`` keeps the full reply."""

    id: str
    move_infos: list[MoveInfo]
    turn_number: int | None
    raw: Mapping[str, object]

    @classmethod
    def from_reply(cls, reply: Mapping[str, object]) -> "AnalysisResponse":
        """Build from a decoded reply.

        :param reply: Reply returned by ``EngineSession.submit``.
        :returns: Parsed response.
        :raises DecodeError: If the reply carries a KataGo ``error`` or malformed ``moveInfos``.
        """
        error: object = reply.get("error")
        if error is not None:
            raise DecodeError(f"KataGo reported an error: {error}", repr(dict(reply)))

        move_infos_obj: object = reply.get("moveInfos", [])
        if isinstance(move_infos_obj, list) is False:
            raise DecodeError("'moveInfos' must be a list", repr(dict(reply)))
        move_infos: list[MoveInfo] = []
        for entry in move_infos_obj:
            if isinstance(entry, Mapping) is False:
                raise DecodeError("'moveInfos' entries must be objects", repr(dict(reply)))
            move_infos.append(MoveInfo.from_wire(entry))

        turn_number: object = reply.get("turnNumber")
        return cls(
            id=str(reply.get("id")),
            move_infos=move_infos,
            turn_number=turn_number if isinstance(turn_number, int) else None,
            raw=reply,
        )


def build_analysis_command(
    config_file: str,
    model_file: str,
    katago_binary: str = DEFAULT_KATAGO_BINARY,
    extra_args: Sequence[str] | None = None,
) -> list[str]:
    """Build the argv for ``katago analysis``.

    :param config_file: Analysis config path.
    :param model_file: Network model path.
    :param katago_binary: KataGo executable.
    :param extra_args: Optional trailing arguments, such as ``-override-config``.
    :returns: Command line as a list.
    """
    command: list[str] = [katago_binary, "analysis", "-config", config_file, "-model", model_file]
    if extra_args is not None:
        command.extend(extra_args)
    return command


def open_katago(
    config_file: str,
    model_file: str,
    katago_binary: str = DEFAULT_KATAGO_BINARY,
    extra_args: Sequence[str] | None = None,
    **overrides: object,
) -> EngineSession:
    """Start a KataGo analysis engine session.

    :param config_file: Analysis config path.
    :param model_file: Network model path.
    :param katago_binary: KataGo executable.
    :param extra_args: Optional trailing arguments.
    :param overrides: Other ``SessionConfig`` fields.
    :returns: Running session.
    :raises SpawnError: If KataGo cannot be launched.
    """
    command: list[str] = build_analysis_command(config_file, model_file, katago_binary, extra_args)
    return open_engine(command[0], command[1:], **overrides)


def analyze(
    session: EngineSession,
    request: AnalysisRequest,
    timeout: "float | None | Unset" = UNSET,
) -> AnalysisResponse:
    """Run one analysis query and parse its reply.

    :param session: Running KataGo session.
    :param request: Query to send.
    :param timeout: Per-call deadline, ``None`` for no deadline; the session default applies when omitted.
    :returns: Parsed response.
    """
    logger.debug("Analyzing %s: %d moves, turns=%s", request.id, len(request.moves), list(request.analyze_turns))
    reply: dict[str, object] = session.submit(request, timeout=timeout)
    return AnalysisResponse.from_reply(reply)
