"""
Billing modules.

``boq`` holds projects and their bill-of-quantities trees;
``progress_billing`` turns them into sequential progress payments.
"""
