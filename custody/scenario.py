"""Scenario files for driving the processor against the in-memory host.

A scenario is a YAML document describing accounts and a sequence of steps:

    program: custody-program
    accounts:
      - {name: vault, owner: program, custody: true}
      - {name: slot, owner: program, release_slot: true}
      - {name: alice, balance: 1000}
      - {name: bridge}
    steps:
      - {op: lock, accounts: [vault, alice], amount: 500}
      - {op: unlock, accounts: [vault, bridge, slot], amount: 200, beneficiary: alice}
      - {op: release, accounts: [vault, slot, alice]}
      - {op: check, accounts: [vault]}
      - {op: raw, accounts: [vault], data: "03", expect_error: invalid_instruction}

Names are turned into account keys with `host.key_for`; a 64-character hex
string is used as a key verbatim. Documents are validated against
SCENARIO_SCHEMA before anything runs.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from jsonschema import Draft202012Validator

from custody.bridge import AuthorizationToken, BridgeSigner
from custody.codec import RECORD_SIZE, RELEASE_REQUEST_SIZE, InstructionCodec, decode_release_request
from custody.events import EventBus, EventRecorder
from custody.hardening import CustodyError
from custody.host import SYSTEM_PROGRAM_ID, InMemoryHost, key_for
from custody.processor import CustodyProcessor
from custody.registry import CustodyRegistry

_HEX_KEY = re.compile(r'^(0x)?[0-9a-fA-F]{64}$')

SCENARIO_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["accounts", "steps"],
    "additionalProperties": False,
    "properties": {
        "program": {"type": "string", "minLength": 1},
        "accounts": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["name"],
                "additionalProperties": False,
                "properties": {
                    "name": {"type": "string", "minLength": 1},
                    "owner": {"type": "string", "minLength": 1},
                    "balance": {"type": "integer", "minimum": 0, "maximum": 18446744073709551615},
                    "custody": {"type": "boolean"},
                    "release_slot": {"type": "boolean"},
                    "data": {"type": "string", "pattern": "^([0-9a-fA-F]{2})*$"},
                },
            },
        },
        "steps": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["op", "accounts"],
                "additionalProperties": False,
                "properties": {
                    "op": {"enum": ["lock", "unlock", "check", "release", "raw"]},
                    "accounts": {"type": "array", "items": {"type": "string"}},
                    "amount": {"type": "integer", "minimum": 0, "maximum": 18446744073709551615},
                    "beneficiary": {"type": "string"},
                    "data": {"type": "string", "pattern": "^([0-9a-fA-F]{2})*$"},
                    "expect_error": {"type": "string"},
                },
            },
        },
    },
}


class ScenarioError(Exception):
    """Scenario document is invalid."""

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__("Invalid scenario: " + "; ".join(errors))


def validate_scenario(data: Any) -> List[str]:
    """Validate a parsed scenario; returns error messages (empty if valid)."""
    validator = Draft202012Validator(SCENARIO_SCHEMA)
    return [
        f"{error.json_path}: {error.message}"
        for error in sorted(validator.iter_errors(data), key=lambda e: e.json_path)
    ]


def load_scenario(path: Union[str, Path]) -> Dict[str, Any]:
    """Load and validate a scenario YAML file."""
    path = Path(path)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise ScenarioError([f"{path}: {e}"]) from e

    errors = validate_scenario(data)
    if errors:
        raise ScenarioError(errors)
    return data


@dataclass
class StepOutcome:
    index: int
    op: str
    status: str
    error_code: Optional[str] = None
    error: Optional[str] = None
    expected: bool = True

    def to_dict(self) -> Dict[str, Any]:
        d = {"index": self.index, "op": self.op, "status": self.status, "expected": self.expected}
        if self.error_code:
            d["error_code"] = self.error_code
            d["error"] = self.error
        return d


@dataclass
class ScenarioResult:
    steps: List[StepOutcome] = field(default_factory=list)
    accounts: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    custody: List[Dict[str, Any]] = field(default_factory=list)
    events: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(step.expected for step in self.steps)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "steps": [s.to_dict() for s in self.steps],
            "accounts": self.accounts,
            "custody": self.custody,
            "events": self.events,
        }


class ScenarioRunner:
    """Builds a host from a scenario and runs its steps in order."""

    def __init__(self, scenario: Dict[str, Any]):
        errors = validate_scenario(scenario)
        if errors:
            raise ScenarioError(errors)
        self.scenario = scenario
        self.host = InMemoryHost()
        self.program_id = self._resolve(scenario.get("program", "custody-program"))
        self.signer = BridgeSigner()
        self.bus = EventBus()
        self.recorder = EventRecorder(self.bus)
        self.processor = CustodyProcessor(
            self.program_id,
            transfer=self.host.transfer,
            bus=self.bus,
            release_authority=self.signer.authority(),
        )
        self._names: Dict[bytes, str] = {}
        self._create_accounts()
        self._check_references()

    @staticmethod
    def _resolve(name: str) -> bytes:
        if _HEX_KEY.match(name):
            return bytes.fromhex(name[2:] if name.startswith("0x") else name)
        return key_for(name)

    def _owner(self, owner: Optional[str]) -> bytes:
        if owner is None or owner == "system":
            return SYSTEM_PROGRAM_ID
        if owner == "program":
            return self.program_id
        return self._resolve(owner)

    def _create_accounts(self) -> None:
        for entry in self.scenario["accounts"]:
            key = self._resolve(entry["name"])
            space = 0
            if entry.get("custody"):
                space = RECORD_SIZE
            elif entry.get("release_slot"):
                space = RELEASE_REQUEST_SIZE
            data = bytes.fromhex(entry["data"]) if "data" in entry else None
            self.host.create_account(
                key,
                owner=self._owner(entry.get("owner")),
                balance=entry.get("balance", 0),
                space=space,
                data=data,
            )
            self._names[key] = entry["name"]

    def _check_references(self) -> None:
        errors = []
        for index, step in enumerate(self.scenario["steps"]):
            names = list(step["accounts"])
            if "beneficiary" in step:
                names.append(step["beneficiary"])
            for name in names:
                if self._resolve(name) not in self._names:
                    errors.append(f"$.steps[{index}]: unknown account '{name}'")
        if errors:
            raise ScenarioError(errors)

    def _payload(self, step: Dict[str, Any]) -> bytes:
        op = step["op"]
        if op == "lock":
            return InstructionCodec.lock(step.get("amount", 0))
        if op == "unlock":
            if "amount" in step or "beneficiary" in step:
                beneficiary = self._resolve(step["beneficiary"]) if "beneficiary" in step else None
                return InstructionCodec.unlock(step.get("amount"), beneficiary)
            return InstructionCodec.unlock()
        if op == "check":
            return InstructionCodec.check()
        return bytes.fromhex(step.get("data", ""))

    def _run_step(self, step: Dict[str, Any]) -> None:
        keys = [self._resolve(name) for name in step["accounts"]]
        if step["op"] == "release":
            if len(keys) < 2:
                # the processor reports the missing accounts
                token = AuthorizationToken(signer=self.signer.public_key, signature=b"")
            else:
                request = decode_release_request(self.host.account(keys[1]).data)
                token = self.signer.authorize(keys[0], request)
            self.host.invoke_release(self.processor, keys, token)
        else:
            self.host.invoke(self.processor, keys, self._payload(step))

    def run(self) -> ScenarioResult:
        result = ScenarioResult()
        for index, step in enumerate(self.scenario["steps"]):
            expect = step.get("expect_error")
            try:
                self._run_step(step)
            except CustodyError as e:
                result.steps.append(StepOutcome(
                    index=index,
                    op=step["op"],
                    status="error",
                    error_code=e.code,
                    error=e.message,
                    expected=expect == e.code,
                ))
                continue
            result.steps.append(StepOutcome(index=index, op=step["op"], status="ok", expected=expect is None))

        registry = CustodyRegistry(self.program_id)
        registry.refresh(self.host.accounts())
        result.custody = [
            dict(entry, name=self._names.get(bytes.fromhex(entry["custody"]), "")) for entry in registry.snapshot()
        ]
        result.accounts = {
            self._names.get(account.key, account.key.hex()): {
                "balance": account.balance,
                "data": bytes(account.data).hex(),
            }
            for account in self.host.accounts()
        }
        result.events = [event.to_dict() for event in self.recorder.events]
        return result


def run_scenario(scenario: Dict[str, Any]) -> ScenarioResult:
    return ScenarioRunner(scenario).run()
