"""
Remote Commands - mongo shell scripts built from typed inputs

Every builder returns a RemoteCommand; script text never leaves this module
as a template. Wait conditions are "keep waiting" expressions evaluated by a
loop that runs inside the mongo shell, one round trip per wait.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Sequence, Tuple

from ..models import MongoDbVersion, SocketAddress
from ..status import WAITING_MSG

REPLICA_SET_NAME = "docker-rs"
STATUS_SCRIPT = "rs.status()"
RECONFIG_MAX_TIME_MS = 10000
WAIT_INTERVAL_MS = 1000
WAIT_EXHAUSTED_EXIT_CODE = 99
ROLLBACK_DIR = "/data/db/rollback"
DEAD_LETTER_DB_NAME = "dead_letter"

MEMBERS_DEFINED = "rs.status().ok === 1 && rs.status().members !== undefined && "
DEFAULT_RW_CONCERN = (
    'db.adminCommand({"setDefaultRWConcern" : 1, "defaultWriteConcern" : { "w" : 1 }});'
)


@dataclass(frozen=True)
class RemoteCommand:
    """
    A script for `mongo --eval`

    Attributes:
        script: JavaScript evaluated by the shell
        description: Human readable purpose, used in errors
        verify_status: Whether the reply's ok field must be 1 as well as the exit code
    """
    script: str
    description: str
    verify_status: bool = False

    def argv(self) -> List[str]:
        return ["mongo", "--eval", self.script]


@dataclass(frozen=True)
class WaitCondition:
    """A keep-waiting expression with a label printed on every attempt"""
    expression: str
    label: str
    attempts_factor: int = 1


def _until(condition: str) -> str:
    return f"!({MEMBERS_DEFINED}{condition})"


def _host(address: SocketAddress) -> str:
    return f"{address.ip}:{address.mapped_port}"


# Wait conditions

def any_primary() -> WaitCondition:
    return WaitCondition(
        _until("rs.status().members.filter(o => o.state === 1).length === 1"),
        f"{WAITING_MSG} a master node to be present in a cluster"
    )


def self_is_master() -> WaitCondition:
    return WaitCondition(
        "db.runCommand( { isMaster: 1 } ).ismaster==false",
        f"{WAITING_MSG} a node to be a master one"
    )


def arbiter_present() -> WaitCondition:
    return WaitCondition(
        _until("rs.status().members.find(o => o.state === 7) !== undefined"),
        f"{WAITING_MSG} an arbiter node to be up"
    )


def primary_reelected(previous_primary: str) -> WaitCondition:
    """
    Another member than previous_primary ("ip:port") is primary

    Re-election gets twice the usual attempt budget.
    """
    return WaitCondition(
        _until(
            "rs.status().members.filter(o => o.state === 1).length === 1 && "
            f"rs.status().members.find(o => o.state === 1 && o.name === '{previous_primary}') === undefined"
        ),
        f"{WAITING_MSG} the reelection of {previous_primary}",
        attempts_factor=2
    )


def all_nodes_up() -> WaitCondition:
    return WaitCondition(
        _until(
            "rs.status().members.filter("
            "o => o.state === 0 || o.state === 3 || o.state === 5 || "
            "o.state === 6 || o.state === 8 || o.state === 9"
            ").length === 0"
        ),
        f"{WAITING_MSG} all nodes are up and running"
    )


def nodes_down(node_number: int) -> WaitCondition:
    return WaitCondition(
        _until(f"rs.status().members.filter(o => o.state === 8).length === {node_number}"),
        f"{WAITING_MSG} {node_number} node(s) is(are) down"
    )


# Commands

def status() -> RemoteCommand:
    return RemoteCommand(STATUS_SCRIPT, "getting the replica set status")


def wait(condition: WaitCondition, attempts: int) -> RemoteCommand:
    """Loop in the shell until the condition clears or the budget runs out"""
    budget = attempts * condition.attempts_factor
    script = (
        "var attempt = 0; "
        f"while ({condition.expression}) {{ "
        f"if (attempt > {budget}) {{quit({WAIT_EXHAUSTED_EXIT_CODE});}} "
        f"print('{condition.label} ' + attempt); sleep({WAIT_INTERVAL_MS}); attempt++; "
        "}"
    )
    return RemoteCommand(script, condition.label)


def find_primary(attempts: int) -> RemoteCommand:
    """Print the name of the single primary, the last line of the reply"""
    script = (
        "var attempt = 0; "
        f"while (attempt <= {attempts}) {{ "
        f"print('{WAITING_MSG} a single master node up to ' + attempt); "
        f"sleep({WAIT_INTERVAL_MS}); attempt++;"
        f"if ({MEMBERS_DEFINED}rs.status().members.filter(o => o.state === 1).length === 1) "
        "{ rs.status().members.find(o => o.state === 1).name; break; }}; "
        f"if(attempt > {attempts}) {{quit({WAIT_EXHAUSTED_EXIT_CODE})}};"
    )
    return RemoteCommand(script, "finding a master node")


def initiate(
    addresses: Sequence[SocketAddress],
    working_node_number: int,
    slave_delay_timeout: int
) -> RemoteCommand:
    """
    rs.initiate over the given members

    Members past working_node_number become hidden, zero-priority, delayed
    secondaries when slave_delay_timeout is positive.
    """
    members = []
    for idx, address in enumerate(addresses):
        member = f'{{"_id": {idx}, "host": "{address.host}"'
        if slave_delay_timeout > 0 and idx > working_node_number - 1:
            member += f', "slaveDelay":{slave_delay_timeout}, "priority": 0, "hidden": true'
        members.append(f"        {member}}}")

    initializer = (
        "rs.initiate({\n"
        f'    "_id": "{REPLICA_SET_NAME}",\n'
        '    "members": [\n'
        + ",\n".join(members)
        + "\n    ]\n});"
    )
    script = (
        f"cfg = {initializer}"
        "if (cfg.ok===1) {cfg} else {throw new Error('Cannot initiate a replica set: ' + JSON.stringify(cfg))}"
    )
    return RemoteCommand(script, "initializing a master node", verify_status=True)


def add_arbiter_on_start(address: SocketAddress, set_default_rw_concern: bool) -> RemoteCommand:
    prefix = DEFAULT_RW_CONCERN if set_default_rw_concern else ""
    return RemoteCommand(
        f'{prefix}rs.addArb("{address.host}")',
        "initializing an arbiter node",
        verify_status=True
    )


def add_working_member(address: SocketAddress) -> RemoteCommand:
    return RemoteCommand(f'rs.add("{_host(address)}")', "adding a node", verify_status=True)


def add_arbiter_member(address: SocketAddress) -> RemoteCommand:
    return RemoteCommand(f'rs.addArb("{_host(address)}")', "adding a node")


def reconfigure_for_psa(address: SocketAddress, is_working_node: bool) -> RemoteCommand:
    """Append a member and reconfigure through the PSA-aware helper"""
    new_member = (
        "JSON.parse('{\"_id\": '+max+', "
        f"\"host\": \"{_host(address)}\", "
        f"\"arbiterOnly\": {json.dumps(not is_working_node)}, "
        "\"buildIndexes\": true, \"hidden\": false, \"priority\": 1, \"votes\": 1, \"tags\": {}}')"
    )
    script = (
        "cfg=rs.config();\n"
        'max=Math.max.apply(Math, cfg["members"].map(function(o) { return o._id; }))+1;\n'
        f'cfg["members"].push({new_member}); \n'
        'rs.reconfigForPSASet(cfg["members"].length-1, cfg);'
    )
    return RemoteCommand(script, "reconfiguring a replica set")


def _forced_reconfig(members_expression: str, description: str) -> RemoteCommand:
    script = (
        "cfg = rs.conf();\n"
        f"cfg.members = {members_expression};\n"
        f"rs.reconfig(cfg, {{force : true, maxTimeMS: {RECONFIG_MAX_TIME_MS}}})"
    )
    return RemoteCommand(script, description, verify_status=True)


def remove_members_forcibly(hosts: Iterable[str], description: str) -> RemoteCommand:
    """
    Rewrite the configuration without the given "ip:port" hosts

    Members are matched by host name, so the order of rs.status() and
    rs.conf() need not agree.
    """
    excluded = json.dumps(sorted(set(hosts)))
    return _forced_reconfig(
        f"cfg.members.filter(m => {excluded}.indexOf(m.host) === -1)",
        description
    )


def remove_member(address: SocketAddress) -> RemoteCommand:
    return RemoteCommand(f'rs.remove("{_host(address)}")', "removing a node", verify_status=True)


def reset_delayed_members(working_node_number: int, members_count: int) -> RemoteCommand:
    """Clear slaveDelay and restore priority and visibility past working_node_number"""
    resets = [
        f"cfg.members[{i - 1}].slaveDelay=0;"
        f"cfg.members[{i - 1}].priority=1;"
        f"cfg.members[{i - 1}].hidden=false"
        for i in range(working_node_number + 1, members_count + 1)
    ]
    script = (
        "cfg = rs.conf();\n"
        + ";\n".join(resets)
        + f";\nrs.reconfig(cfg, {{force : true, maxTimeMS: {RECONFIG_MAX_TIME_MS}}})"
    )
    return RemoteCommand(script, "resetting delayed members", verify_status=True)


def drop_connections(hosts: Sequence[str], drop: bool) -> RemoteCommand:
    """dropConnections admin command (server 4.2+)"""
    host_list = ",".join(f'"{h}"' for h in hosts)
    return RemoteCommand(
        f'db.adminCommand({{"dropConnections" : {1 if drop else 0}, "hostAndPort":[{host_list}]}});',
        "dropping connections",
        verify_status=True
    )


# Membership path decision table

class MembershipPath(Enum):
    """How a member is (re-)added to a running replica set"""
    PSA_RECONFIG = "psa_reconfig"
    PLAIN_ADD = "plain_add"


PSA_MAJOR_VERSION = 5

MEMBERSHIP_PATHS: Dict[Tuple[bool, bool], MembershipPath] = {
    (True, True): MembershipPath.PSA_RECONFIG,
    (True, False): MembershipPath.PLAIN_ADD,
    (False, True): MembershipPath.PLAIN_ADD,
    (False, False): MembershipPath.PLAIN_ADD,
}


def membership_path(version: MongoDbVersion, arbiter_present: bool) -> MembershipPath:
    return MEMBERSHIP_PATHS[(version.major >= PSA_MAJOR_VERSION, arbiter_present)]


def requires_default_rw_concern(version: MongoDbVersion, arbiter_present: bool) -> bool:
    """Servers 5.0+ refuse an arbiter until a default write concern is set"""
    return membership_path(version, arbiter_present) is MembershipPath.PSA_RECONFIG


# Container shell commands

def rollback_path(collection_full_name: str) -> str:
    return f"{ROLLBACK_DIR}/{collection_full_name}"


def wait_for_rollback_directory(path: str, attempts: int) -> List[str]:
    return [
        "sh", "-c",
        f"COUNTER=1; "
        f"while [ $COUNTER != {attempts} ] && [ ! -d {path} ]; "
        f"do sleep 1; "
        f"COUNTER=$((COUNTER+1)); "
        f"echo waiting for a rollback directory: $COUNTER up to {attempts}; "
        f"done"
    ]


def mongorestore(url: str, path: str) -> List[str]:
    return ["mongorestore", f"--uri={url}", "--db", DEAD_LETTER_DB_NAME, path]
