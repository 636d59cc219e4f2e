"""
Boutique: validation du panier, tarification par paliers, création de sessions de paiement
et réconciliation des webhooks (Stripe / PayPal) vers le store de commandes Supabase.
"""
