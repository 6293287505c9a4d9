#!/usr/bin/env python
"""
Generate RSA keys for JWT signing.

This script generates a pair of RSA keys (private and public) for the RS256
access tokens. Point JWT_PRIVATE_KEY_PATH / JWT_PUBLIC_KEY_PATH at the files;
without them the gateway generates a throwaway pair on every start and
every outstanding access token stops verifying after a restart.

    python -m saas_gateway.scripts.generate_keys --key-dir ./keys
"""

import argparse
import os
from typing import Optional, List

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa


def generate_rsa_keys(key_dir: str = "./keys", key_size: int = 2048):
    """Generate RSA keys for JWT signing; returns the (private, public) paths"""
    os.makedirs(key_dir, exist_ok=True)

    private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    )

    private_path = os.path.join(key_dir, "private_key.pem")
    public_path = os.path.join(key_dir, "public_key.pem")
    with open(private_path, "wb") as f:
        f.write(private_pem)
    os.chmod(private_path, 0o600)
    with open(public_path, "wb") as f:
        f.write(public_pem)

    return private_path, public_path


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Generate an RSA key pair for JWT signing")
    parser.add_argument("--key-dir", default="./keys")
    parser.add_argument("--key-size", type=int, default=2048)
    args = parser.parse_args(argv)

    private_path, public_path = generate_rsa_keys(args.key_dir, args.key_size)
    print(f"RSA keys generated successfully in {args.key_dir}")
    print(f"Private key: {private_path}")
    print(f"Public key: {public_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
