"""
EV Charging Authentication Protocol Documentation
=================================================

Step table and prose overview of the three-party protocol between Electric
Vehicles (EV), the Utility Service Provider (USP) and Charging Stations (CS).
"""
import inspect
from typing import Dict, List

PROTOCOL_STEPS: List[Dict] = [
    {
        "phase": "EV Registration",
        "steps": [
            {"id": 1, "title": "EV → USP: M1 (PSIDEV, CH, RS, PUBi)",
             "description": "EV sends registration request with PUFF challenge response"},
            {"id": 2, "title": "USP → EV: M2 (Aj, ID_USP, PUB_USP)",
             "description": "USP validates and responds with authentication token"},
        ],
    },
    {
        "phase": "Charging Station Registration",
        "steps": [
            {"id": 3, "title": "CS → USP: M1 (ID_Charging, CH, PUFF_Response, PUB_Charging)",
             "description": "Charging station registers with USP"},
            {"id": 4, "title": "USP → CS: M2 (Aj, ID_USP, Timestamp)",
             "description": "USP confirms charging station registration"},
        ],
    },
    {
        "phase": "Authentication Process",
        "steps": [
            {"id": 5, "title": "EV → CS: M1 (PSIDEV, N1, PUB_EV)",
             "description": "EV initiates authentication with charging station"},
            {"id": 6, "title": "CS → EV: M2 (ID_Charging, CH, N2, Seed)",
             "description": "Charging station responds with challenge and seed"},
            {"id": 7, "title": "EV → CS: M3 (PSIDEV, CH, PUFF_Result, Ki)",
             "description": "EV provides PUFF response for verification"},
            {"id": 8, "title": "CS → EV: M4 (ID, CH, N, PUFF_Result, Token, Key)",
             "description": "Charging station completes authentication with token"},
        ],
    },
]


def step_status(step_id: int, current_step: int) -> str:
    """Progress label for a step row given the simulation's current step counter"""
    if step_id < current_step:
        return "completed"
    if step_id == current_step:
        return "active"
    return "pending"


def protocol_overview():
    """
    Protocol Overview
    -----------------
    Every EV and charging station first registers with the single USP, then
    each EV authenticates directly with a charging station. Registration binds
    a device to the USP through a simulated PUFF (Physically Unclonable
    Function) challenge-response; authentication proves possession of the
    same PUFF to the station and yields a session token and key.

    Derived values:
    - PSIDEV = H(ID_EV, PUFF(CH))             pseudonymous EV identity
    - Aj     = H(ID_EV, CH, ID_USP, PUB_USP)  USP authorization tag
    - Ki     = PUFF(Seed)                      EV answer to the station's seed
    - Token  = H(PSIDEV, T, PUFF_Result, ID_CS)
    - RSK    = PUFF(PUFF_Result)
    - Key    = H(RSK, Token)

    PUFF and H are deterministic placeholder folds, not security primitives.
    """
    pass


def protocol_flowchart():
    """
    Protocol Flowchart
    ------------------

    1. Registration (EV shown; stations follow the same two messages):

       EV                                                       USP
        |--- M1 (PSIDEV, CH, RS, PUBi) --------------------------->|
        |                                     USP derives Aj      |
        |<-- M2 (Aj, ID_USP, PUB_USP, nonce) ---------------------|
        | EV returns to idle                                      |

    2. Authentication:

       EV                                                        CS
        |--- M1 (PSIDEV, N1, PUB_EV) ----------------------------->|
        |<-- M2 (ID_Charging, CH, N2, Seed) -----------------------|
        |                                   CS keeps PUFF(Seed)    |
        |--- M3 (PSIDEV, CH', PUFF_Result, Ki) ------------------->|
        |                                   CS checks Ki           |
        |<-- M4 (ID, CH', N2, PUFF_Result, Token, Key) ------------|
        | both authenticated                                       |

    A rejected Ki ends the handshake after M3; no M4 is sent and both nodes
    are marked failed.
    """
    pass


def metrics_definitions():
    """
    Metrics
    -------
    - total messages: one per appended message
    - network utilization: min(100, 2 * total messages) percent
    - successful authentications: one per EV registration and one per
      completed authentication; station registration does not count
    - end-to-end delay: +2D per EV registration, +4D per authentication
    - throughput: +60000 / D authentications per minute per authentication
    - average processing time: (previous + 4D) / 2 per authentication
    """
    pass


def describe_protocol() -> str:
    """Printable description: the overview followed by the numbered step table"""
    lines = [inspect.cleandoc(protocol_overview.__doc__), ""]
    for phase in PROTOCOL_STEPS:
        lines.append(phase["phase"])
        for step in phase["steps"]:
            lines.append(f"  {step['id']}. {step['title']}")
            lines.append(f"     {step['description']}")
    lines.append("")
    lines.append(inspect.cleandoc(protocol_flowchart.__doc__))
    lines.append("")
    lines.append(inspect.cleandoc(metrics_definitions.__doc__))
    return "\n".join(lines)
