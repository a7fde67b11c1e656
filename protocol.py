"""
Protocol orchestrator for the EV / USP / charging station handshake.

A run has three strictly sequential phases:

1. every EV registers with the USP (M1_EV_Registration, M2_USP_Response)
2. every charging station registers with the USP (M1_CS_Registration,
   M2_USP_CS_Response)
3. EV[i] authenticates with CS[i mod |CS|] for i < min(|EV|, |CS|)
   (M1_Auth_Request, M2_Challenge_Response, M3_PUFF_Response,
   M4_Auth_Complete)

Handshakes run one at a time and the orchestrator suspends for the step
delay after every message.
"""
import logging
import random
from typing import Optional

from errors import MissingCounterpartError
from events import EventBus, EventType, HandshakeKind
from messages import MessageLog, MessageType, Phase
from nodes import Node, NodeRegistry, NodeStateMachine, NodeStatus
from primitives import (
    CHALLENGE_LENGTH,
    NONCE_LENGTH,
    SEED_LENGTH,
    PuffHashPrimitives,
    random_token,
)
from scheduler import CancellationToken, Scheduler

logger = logging.getLogger(__name__)


class ProtocolOrchestrator:
    """
    Drives one simulation run. Owns the registry, log and event bus for the
    duration of the run; nothing else mutates them until run() returns.
    """
    def __init__(self, registry: NodeRegistry, log: MessageLog, bus: EventBus,
                 scheduler: Scheduler, step_delay_ms: float,
                 token: Optional[CancellationToken] = None,
                 primitives: Optional[PuffHashPrimitives] = None,
                 rng: Optional[random.Random] = None,
                 failure_probability: float = 0.0,
                 strict_topology: bool = False,
                 state_machine: Optional[NodeStateMachine] = None):
        self.registry = registry
        self.log = log
        self.bus = bus
        self.scheduler = scheduler
        self.step_delay_ms = step_delay_ms
        self.token = token or CancellationToken()
        self.primitives = primitives or PuffHashPrimitives()
        self.rng = rng or random.Random()
        self.failure_probability = failure_probability
        self.strict_topology = strict_topology
        self.state_machine = state_machine or NodeStateMachine()
        self.current_step = 0  # handshakes that reached an outcome

    def run(self):
        """Run all three phases to completion"""
        self.register_evs()
        self.register_stations()
        self.authenticate_pairs()

    # Phases

    def register_evs(self):
        for ev in self.registry.evs():
            self.register_ev(ev)

    def register_stations(self):
        for station in self.registry.stations():
            self.register_station(station)

    def authenticate_pairs(self):
        evs = self.registry.evs()
        stations = self.registry.stations()
        for i in range(min(len(evs), len(stations))):
            self.authenticate(evs[i], stations[i % len(stations)])

    # Handshakes

    def register_ev(self, ev: Node) -> bool:
        """EV registration: M1 (psidev, challenge, response) then M2 (Aj, USP key, nonce)"""
        usp = self._find_usp(ev, HandshakeKind.EV_REGISTRATION)
        if usp is None:
            return False

        self.state_machine.begin_handshake(ev, NodeStatus.REGISTERING)
        self.log.open_handshake()

        # EV generates a challenge and its PUFF response, then its pseudonym
        challenge = random_token(self.rng, CHALLENGE_LENGTH)
        puff_response = self.primitives.puff(challenge)
        psidev = self.primitives.hash(ev.id, puff_response)
        ev.challenge = challenge
        ev.puff_response = puff_response
        ev.assign_once("psidev", psidev)

        self.log.append(ev.id, usp.id, MessageType.M1_EV_REGISTRATION, {
            "psidev": psidev,
            "challenge": challenge,
            "response": puff_response,
            "publicKey": ev.public_key,
        }, Phase.REGISTRATION, 1)
        self._wait()

        # USP answers with its authorization tag
        nonce = random_token(self.rng, NONCE_LENGTH)
        aj = self.primitives.hash(ev.id, challenge, usp.id, usp.public_key)
        ev.nonce = nonce

        self.log.append(usp.id, ev.id, MessageType.M2_USP_RESPONSE, {
            "aj": aj,
            "uspId": usp.id,
            "uspPublicKey": usp.public_key,
            "nonce": nonce,
        }, Phase.REGISTRATION, 2)
        self._wait()

        self.state_machine.transition(ev, NodeStatus.IDLE)
        self._complete(HandshakeKind.EV_REGISTRATION, ev, usp)
        return True

    def register_station(self, station: Node) -> bool:
        """Station registration: M1 (id, challenge, PUFF response) then M2 (Aj, timestamp)"""
        usp = self._find_usp(station, HandshakeKind.CS_REGISTRATION)
        if usp is None:
            return False

        self.state_machine.begin_handshake(station, NodeStatus.REGISTERING)
        self.log.open_handshake()

        challenge = random_token(self.rng, CHALLENGE_LENGTH)
        puff_response = self.primitives.puff(challenge)
        station.challenge = challenge
        station.puff_response = puff_response

        self.log.append(station.id, usp.id, MessageType.M1_CS_REGISTRATION, {
            "chargingId": station.id,
            "challenge": challenge,
            "puffResponse": puff_response,
            "publicKey": station.public_key,
        }, Phase.REGISTRATION, 1)
        self._wait()

        aj = self.primitives.hash(station.id, challenge, puff_response,
                                  usp.id, usp.public_key, station.public_key)

        self.log.append(usp.id, station.id, MessageType.M2_USP_CS_RESPONSE, {
            "aj": aj,
            "uspId": usp.id,
            "timestamp": self.scheduler.now(),
        }, Phase.REGISTRATION, 2)
        self._wait()

        self.state_machine.transition(station, NodeStatus.IDLE)
        self._complete(HandshakeKind.CS_REGISTRATION, station, usp)
        return True

    def authenticate(self, ev: Node, station: Node) -> bool:
        """Four-message EV / station authentication; returns True when a token is issued"""
        if ev.psidev is None:
            # Never registered (its registration was skipped), so it has no pseudonym
            logger.warning("Skipping authentication of %s with %s: EV is not registered", ev.id, station.id)
            self.bus.emit(EventType.HANDSHAKE_SKIPPED, self.scheduler.now(),
                          handshake=HandshakeKind.AUTHENTICATION, initiator=ev.id,
                          responder=station.id, reason="unregistered")
            return False

        self.state_machine.begin_handshake(ev, NodeStatus.AUTHENTICATING)
        self.state_machine.begin_handshake(station, NodeStatus.AUTHENTICATING)
        self.log.open_handshake()

        # M1: EV introduces itself by pseudonym
        n1 = random_token(self.rng, NONCE_LENGTH)
        ev.nonce = n1
        self.log.append(ev.id, station.id, MessageType.M1_AUTH_REQUEST, {
            "psidev": ev.psidev,
            "n1": n1,
            "publicKey": ev.public_key,
        }, Phase.AUTHENTICATION, 1)
        self._wait()

        # M2: station sends a challenge and a seed, keeping the PUFF it expects back
        challenge = random_token(self.rng, CHALLENGE_LENGTH)
        seed = random_token(self.rng, SEED_LENGTH)
        expected_ki = self.primitives.puff(seed)
        n2 = random_token(self.rng, NONCE_LENGTH)
        station.challenge = challenge
        station.nonce = n2

        self.log.append(station.id, ev.id, MessageType.M2_CHALLENGE_RESPONSE, {
            "chargingId": station.id,
            "challenge": challenge,
            "n2": n2,
            "seed": seed,
        }, Phase.AUTHENTICATION, 2)
        self._wait()

        # M3: EV answers with a fresh PUFF pair plus its PUFF over the seed
        tampered = self._inject_failure()
        ki = self.primitives.puff(seed, ev.id) if tampered else self.primitives.puff(seed)
        ev_challenge = random_token(self.rng, CHALLENGE_LENGTH)
        puff_result = self.primitives.puff(ev_challenge)

        self.log.append(ev.id, station.id, MessageType.M3_PUFF_RESPONSE, {
            "psidev": ev.psidev,
            "challenge": ev_challenge,
            "puffResult": puff_result,
            "ki": ki,
        }, Phase.AUTHENTICATION, 3)
        self._wait()

        if tampered or ki != expected_ki:
            self._fail(ev, station)
            return False

        # M4: station issues the token and the session key
        token = self.primitives.hash(ev.psidev, str(int(self.scheduler.now())), puff_result, station.id)
        rsk = self.primitives.puff(puff_result)
        encryption_key = self.primitives.hash(rsk, token)

        self.log.append(station.id, ev.id, MessageType.M4_AUTH_COMPLETE, {
            "id": station.id,
            "challenge": ev_challenge,
            "nonce": n2,
            "puffResult": puff_result,
            "token": token,
            "key": encryption_key,
        }, Phase.AUTHENTICATION, 4)
        self._wait()

        self.state_machine.transition(ev, NodeStatus.AUTHENTICATED)
        self.state_machine.transition(station, NodeStatus.AUTHENTICATED)
        ev.assign_once("token", token)
        self._complete(HandshakeKind.AUTHENTICATION, ev, station)
        return True

    # Helpers

    def _wait(self):
        self.scheduler.sleep(self.step_delay_ms, self.token)

    def _inject_failure(self) -> bool:
        if self.failure_probability <= 0:
            return False
        return self.rng.random() < self.failure_probability

    def _find_usp(self, node: Node, kind: HandshakeKind) -> Optional[Node]:
        usp = self.registry.usp()
        if usp is not None:
            return usp
        if self.strict_topology:
            raise MissingCounterpartError(node.id, "USP")
        logger.warning("Skipping %s of %s: no USP in the topology", kind.value, node.id)
        self.bus.emit(EventType.HANDSHAKE_SKIPPED, self.scheduler.now(),
                      handshake=kind, initiator=node.id, responder=None, reason="missing USP")
        return None

    def _complete(self, kind: HandshakeKind, initiator: Node, responder: Node):
        self.current_step += 1
        logger.debug("%s between %s and %s completed", kind.value, initiator.id, responder.id)
        self.bus.emit(EventType.HANDSHAKE_COMPLETED, self.scheduler.now(),
                      handshake=kind, initiator=initiator.id, responder=responder.id,
                      step_delay_ms=self.step_delay_ms)

    def _fail(self, ev: Node, station: Node):
        self.state_machine.transition(ev, NodeStatus.FAILED)
        self.state_machine.transition(station, NodeStatus.FAILED)
        self.current_step += 1
        logger.warning("%s rejected %s: PUFF response over the seed did not match", station.id, ev.id)
        self.bus.emit(EventType.HANDSHAKE_FAILED, self.scheduler.now(),
                      handshake=HandshakeKind.AUTHENTICATION, initiator=ev.id,
                      responder=station.id, step_delay_ms=self.step_delay_ms)
