"""Streamlit frontend and launcher for ScholarAgent."""
