"""Laundry pickup marketplace: address entry and geo services"""
