"""Deployment pipeline: typed actions run in order after a renewal."""
