"""Spend orchestration: turn an unsigned builder into a signed transaction.

The builder is never modified. Every solver is checked against its
previous output before the first signature is made, so a failing spend
leaves nothing half-signed behind.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence as SequenceABC
from dataclasses import replace

from tx_solver.btc.script import encode_pushes, parse_script
from tx_solver.btc.solvers import SigningContext, Solution, Solver
from tx_solver.btc.transaction import MutableTransaction, Transaction, TxOutput
from tx_solver.config.settings import AppConfig
from tx_solver.errors.tx_errors import AlignmentError, TxSolverError

logger = logging.getLogger(__name__)


def spend(
    tx: MutableTransaction,
    previous_outputs: SequenceABC[TxOutput],
    solvers: SequenceABC[Solver],
    *,
    config: AppConfig | None = None,
) -> Transaction:
    """Sign every input of *tx* and return the finalized transaction.

    Args:
        tx: The unsigned transaction.
        previous_outputs: The output spent by each input, in input order.
        solvers: One solver per input, in input order.
        config: Settings supplying the default sighash. Loaded from the
            environment when omitted.

    Returns:
        A new :class:`Transaction` carrying every scriptSig and witness.

    Raises:
        AlignmentError: Inputs, previous outputs and solvers differ in length.
        TemplateMismatchError: A solver does not fit its previous output.
        InsufficientSignaturesError: A multisig solver has the wrong key count.
        UnsupportedScriptError: A previous output cannot be spent.
    """
    if not len(tx.inputs) == len(previous_outputs) == len(solvers):
        msg = (
            f"{len(tx.inputs)} inputs, {len(previous_outputs)} previous outputs "
            f"and {len(solvers)} solvers"
        )
        raise AlignmentError(msg)

    # Classify by bytes, whatever Script class the caller built
    scripts = [parse_script(prev_out.script_pubkey.raw) for prev_out in previous_outputs]
    for index, (script, solver) in enumerate(zip(scripts, solvers, strict=True)):
        try:
            solver.check(script)
        except TxSolverError as exc:
            exc.input_index = index
            raise

    segwit = tx.segwit or any(solver.solves_segwit() for solver in solvers)

    default_sighash = (config or AppConfig()).signing.default_sighash()
    skeleton = Transaction(
        version=tx.version,
        inputs=tuple(replace(inp, script_sig=b"", witness=()) for inp in tx.inputs),
        outputs=tuple(tx.outputs),
        locktime=tx.locktime,
        segwit=segwit,
    )
    logger.debug(
        "Spending %d inputs (segwit=%s, default sighash %s)",
        len(skeleton.inputs),
        segwit,
        default_sighash,
    )

    solutions: list[Solution] = []
    for index, (prev_out, script, solver) in enumerate(
        zip(previous_outputs, scripts, solvers, strict=True)
    ):
        logger.debug(
            "Input %d: solving %s with %s", index, script.script_type, type(solver).__name__
        )
        context = SigningContext(
            tx=skeleton,
            input_index=index,
            amount=prev_out.value,
            script_code=script,
            default_sighash=default_sighash,
        )
        try:
            solutions.append(solver.satisfy(script, context))
        except TxSolverError as exc:
            exc.input_index = index
            raise

    inputs = tuple(
        replace(inp, script_sig=encode_pushes(solution.script_sig), witness=solution.witness)
        for inp, solution in zip(skeleton.inputs, solutions, strict=True)
    )
    return replace(skeleton, inputs=inputs)
