"""
hvwallet - Operator wallet primitives for Harvy

Transaction and PSBT encoding, signing, UTXO selection and blockchain backends.
"""
