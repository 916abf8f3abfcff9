"""Reelcoin backend - token ledger and entitlements"""
