"""Bitcoin primitives: scripts, transactions, sighashes, solvers and spending."""

from tx_solver.btc.keys import PrivateKey, Signer
from tx_solver.btc.locktime import Locktime, Sequence
from tx_solver.btc.script import (
    IfElseScript,
    MultisigScript,
    NulldataScript,
    P2pkhScript,
    P2pkScript,
    P2shScript,
    P2wpkhV0Script,
    P2wshV0Script,
    RelativeTimelockScript,
    Script,
    ScriptType,
    TimelockScript,
    parse_script,
)
from tx_solver.btc.sighash import Sighash, SighashType
from tx_solver.btc.solvers import (
    Branch,
    IfElseSolver,
    MultisigSolver,
    P2pkhSolver,
    P2pkSolver,
    P2shSolver,
    P2wpkhV0Solver,
    P2wshV0Solver,
    RelativeTimelockSolver,
    Solver,
    TimelockSolver,
)
from tx_solver.btc.spend import spend
from tx_solver.btc.transaction import MutableTransaction, Transaction, TxInput, TxOutput

__all__ = [
    "Branch",
    "IfElseScript",
    "IfElseSolver",
    "Locktime",
    "MultisigScript",
    "MultisigSolver",
    "MutableTransaction",
    "NulldataScript",
    "P2pkScript",
    "P2pkSolver",
    "P2pkhScript",
    "P2pkhSolver",
    "P2shScript",
    "P2shSolver",
    "P2wpkhV0Script",
    "P2wpkhV0Solver",
    "P2wshV0Script",
    "P2wshV0Solver",
    "PrivateKey",
    "RelativeTimelockScript",
    "RelativeTimelockSolver",
    "Script",
    "ScriptType",
    "Sequence",
    "Sighash",
    "SighashType",
    "Signer",
    "Solver",
    "TimelockScript",
    "TimelockSolver",
    "Transaction",
    "TxInput",
    "TxOutput",
    "parse_script",
    "spend",
]
