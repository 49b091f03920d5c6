"""
Status Parser - turns mongo shell transcripts into ClusterStatus snapshots

The legacy shell prints a banner, a "MongoDB server version: X.Y.Z" line and then
a pretty-printed document that is not strict JSON (ISODate(...), Timestamp(a, b),
NumberLong(...)). The parser:
- anchors on the version line, everything before it is banner
- collapses the payload into a single line
- cuts the document at the top-level "ok" field and splices in the version
  and the status code so the remainder is a well-formed flow document
- loads it with PyYAML and maps the members
"""

import logging
import re
from typing import Any, Dict, List, Optional

import yaml

from ..exceptions import StatusParseError
from ..models import ClusterStatus, MemberState, MongoDbVersion, Node

logger = logging.getLogger("StatusParser")

VERSION_MARKER = re.compile(r"server version:\s*(\S+)", re.IGNORECASE)
OK_MARKER = re.compile(r'"ok"\s*:\s*', re.IGNORECASE)
STATUS_TOKEN = re.compile(r"-?\d+(?:\.\d+)?")
SHELL_WRAPPER = re.compile(
    r"\b(ISODate|Timestamp|NumberLong|NumberInt|NumberDecimal|ObjectId|UUID|BinData|HexData)"
    r"\(([^)]*)\)"
)
WAITING_MSG = "Waiting for"


def _quote_wrapper(match: "re.Match") -> str:
    inner = match.group(2).replace('"', "").replace("'", "")
    return f'"{match.group(1)}({inner})"'


class StatusParser:
    """
    Converts raw `mongo --eval` output into a ClusterStatus
    """

    def parse(self, raw: str) -> ClusterStatus:
        """
        Parse a status transcript

        Args:
            raw: Captured stdout of a shell eval

        Returns:
            ClusterStatus with members sorted by port

        Raises:
            StatusParseError: If the version line or the ok field is missing,
                or the payload cannot be loaded
        """
        version_text, payload = self._split_payload(raw)
        document = self._load(self._splice(payload, version_text, raw), raw)

        try:
            version = MongoDbVersion.parse(str(document.get("version", "")))
        except ValueError as e:
            raise StatusParseError(f"Cannot parse server version: {e}", raw) from e

        return ClusterStatus(
            status=int(document["status"]),
            version=version,
            members=tuple(self._map_members(document.get("members"), raw)),
        )

    def extract_raw_payload(self, raw: str) -> Optional[str]:
        """
        Last meaningful line printed after the version marker

        Progress lines of a remote wait loop are skipped.
        """
        _, lines = self._payload_lines(raw)
        values = [
            line for line in lines
            if line and not line.startswith(WAITING_MSG)
        ]
        return values[-1] if values else None

    def _payload_lines(self, raw: str):
        lines = (raw or "").replace("\t", "").split("\n")
        for idx, line in enumerate(lines):
            match = VERSION_MARKER.search(line)
            if match:
                return match.group(1), [l.strip() for l in lines[idx + 1:]]
        raise StatusParseError(
            "Cannot find a server version line in the shell output, "
            "the command has probably failed",
            raw
        )

    def _split_payload(self, raw: str):
        version_text, lines = self._payload_lines(raw)
        return version_text, "".join(lines)

    def _splice(self, payload: str, version_text: str, raw: str) -> str:
        ok = OK_MARKER.search(payload)
        if ok is None:
            raise StatusParseError(
                "Cannot find the ok field, the shell has probably produced a partial status",
                raw
            )

        token = STATUS_TOKEN.match(payload, ok.end())
        if token is None:
            raise StatusParseError(f"Cannot read the ok value in: {payload[ok.start():ok.end() + 8]}", raw)
        value = float(token.group(0))
        if value not in (0.0, 1.0):
            raise StatusParseError(f"Unexpected ok value: {token.group(0)}", raw)

        return payload[:ok.start()] + f'"version" : "{version_text}", "status" : {int(value)}}}'

    def _load(self, buffer: str, raw: str) -> Dict[str, Any]:
        normalized = SHELL_WRAPPER.sub(_quote_wrapper, buffer)
        try:
            document = yaml.safe_load(normalized)
        except yaml.YAMLError as e:
            logger.error(f"Cannot convert shell output to a document:\n{raw}")
            raise StatusParseError(f"Cannot load status document: {e}", raw) from e

        if not isinstance(document, dict):
            raise StatusParseError(f"Status document is not a mapping: {normalized}", raw)
        return document

    def _map_members(self, members: Optional[List[Dict[str, Any]]], raw: str) -> List[Node]:
        nodes = []
        for member in members or []:
            name = str(member.get("name", ""))
            ip, sep, port = name.rpartition(":")
            if not sep or not port.isdigit():
                raise StatusParseError(f"Cannot parse a member name: {name}", raw)
            nodes.append(Node(
                ip=ip,
                port=int(port),
                health=float(member.get("health", 0)),
                state=MemberState.from_value(int(member.get("state", -1))),
            ))
        return sorted(nodes, key=lambda n: n.port)
