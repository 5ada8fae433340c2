"""
Transaction-building capability backed by bsv-sdk.

Given spendable outputs, the outputs to create and a wallet, produce a fully
signed, broadcast-ready transaction (P2PKH inputs, SIGHASH_ALL|FORKID).
Fees are not computed here: callers set every output amount explicitly.
"""

from typing import List, Protocol

from bsvclaw.errors import SigningError
from bsvclaw.schema import OutputSpec, SignedTransaction, Utxo


class TransactionSigner(Protocol):
    def sign(self, inputs: List[Utxo], outputs: List[OutputSpec], wallet) -> SignedTransaction:
        ...


class BsvSigner:
    """Default signer: builds and signs with bsv-sdk's Transaction/P2PKH."""

    def sign(self, inputs: List[Utxo], outputs: List[OutputSpec], wallet) -> SignedTransaction:
        if not inputs:
            raise SigningError("Cannot build a transaction without inputs")
        try:
            from bsv import P2PKH, Script, Transaction, TransactionInput, TransactionOutput

            key = wallet.private_key
            own_lock = P2PKH().lock(wallet.address)
            tx_inputs = []
            for utxo in inputs:
                tx_input = TransactionInput(
                    source_txid=utxo.txid,
                    source_output_index=utxo.vout,
                    unlocking_script_template=P2PKH().unlock(key),
                )
                # Sighash preimage commits to the spent output's script and amount
                tx_input.satoshis = utxo.satoshis
                tx_input.locking_script = Script(utxo.script_hex) if utxo.script_hex else own_lock
                tx_inputs.append(tx_input)

            tx_outputs = []
            for out in outputs:
                if out.script_hex is not None:
                    locking_script = Script(out.script_hex)
                elif out.address:
                    locking_script = P2PKH().lock(out.address)
                else:
                    raise SigningError("Output needs either a script or an address")
                tx_outputs.append(TransactionOutput(locking_script=locking_script, satoshis=out.satoshis))

            tx = Transaction(tx_inputs, tx_outputs, version=1)
            tx.sign()
            return SignedTransaction(txid=tx.txid(), raw_hex=tx.hex(), inputs=list(inputs), outputs=list(outputs))
        except SigningError:
            raise
        except Exception as e:
            raise SigningError(f"Signing failed: {type(e).__name__}: {e}") from e
