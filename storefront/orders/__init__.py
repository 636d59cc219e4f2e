"""
Module 'orders' (feature-first): modèle des commandes, graphe de statuts et accès au store Supabase.
"""
