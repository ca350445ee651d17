"""Complaint Portal - Services"""
