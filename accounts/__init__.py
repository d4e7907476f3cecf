"""accounts/ -- Account lifecycle orchestration (signup through password reset).

Layer rule: accounts/ imports from auth/ and core/errors.py. It does NOT
import from api/; api/ imports from accounts/.
"""
