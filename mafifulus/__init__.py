"""Mafifulus personal finance package.

Upload a bank statement PDF, review the extracted transactions and get a
cash-flow dashboard plus a voice advisor.  See ``server.py`` for the HTTP
API and ``app.py`` for the Streamlit interface.
"""
