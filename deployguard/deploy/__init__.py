"""Deployment tooling: blue-green deploys, automatic rollback and verification."""
